"""
Album manifest (album.toml) loading and validation.
"""

import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Dict, List, Optional

from album_core.constants import (
    ALBUM_MANIFEST_FILENAME, ARTWORK_DIR, AUDIO_CONTENT_TYPES, AUDIO_DIR, COVER_ART_NAMES,
)
from album_core.errors import ManifestError
from album_core.models import Album, AlbumTrack

DNS_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
PLACEHOLDER_MARKERS = ("TODO", "My Album", "Artist Name")
IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp"}


def is_dns_label(label: str) -> bool:
    """Check a single DNS label: 1-63 chars of [a-z0-9-], no edge hyphens."""
    return bool(DNS_LABEL_RE.match(label))


def parse_duration(value: str) -> int:
    """
    Parse a "M:SS" / "MM:SS" duration into seconds.

    Raises:
        ManifestError: On any other format or when seconds >= 60
    """
    parts = value.split(":")
    if len(parts) != 2:
        raise ManifestError(f"Invalid duration format '{value}', expected MM:SS")
    try:
        minutes = int(parts[0])
        seconds = int(parts[1])
    except ValueError:
        raise ManifestError(f"Invalid duration '{value}', expected MM:SS")
    if minutes < 0 or seconds < 0:
        raise ManifestError(f"Invalid duration '{value}', expected MM:SS")
    if seconds >= 60:
        raise ManifestError(f"Seconds must be < 60 in duration '{value}'")
    return minutes * 60 + seconds


def _check_relative_path(raw: str) -> str:
    # Reject anything that could escape the album directory
    posix = PurePosixPath(raw.replace("\\", "/"))
    if not raw or posix.is_absolute() or PureWindowsPath(raw).is_absolute():
        raise ManifestError(f"Track file must be a relative path: '{raw}'")
    if ".." in posix.parts:
        raise ManifestError(f"Track file may not contain '..': '{raw}'")
    return str(posix)


def _require(table: Dict[str, Any], key: str, section: str) -> str:
    value = table.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ManifestError(f"Missing required field [{section}] {key}")
    return value


def _table(parent: Dict[str, Any], key: str, section: str) -> Dict[str, Any]:
    value = parent.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ManifestError(f"[{section}] must be a table")
    return value


def _optional_str(table: Dict[str, Any], key: str, section: str) -> Optional[str]:
    value = table.get(key)
    if value is not None and not isinstance(value, str):
        raise ManifestError(f"[{section}] {key} must be a string")
    return value


def _parse_tracks(raw_tracks: Any) -> List[AlbumTrack]:
    if not isinstance(raw_tracks, list):
        raise ManifestError("[[track]] must be an array of tables")
    tracks = []
    for index, raw in enumerate(raw_tracks, start=1):
        if not isinstance(raw, dict):
            raise ManifestError(f"Track #{index} is not a table")
        file = _check_relative_path(_require(raw, "file", f"track #{index}"))
        title = _require(raw, "title", f"track #{index}")
        duration = _optional_str(raw, "duration", f"track #{index}")
        tracks.append(AlbumTrack(
            file=file,
            title=title,
            duration=parse_duration(duration) if duration else None,
        ))
    return tracks


def parse_album(content: str) -> Album:
    """Parse album.toml from a string (useful for testing)."""
    try:
        raw = tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        raise ManifestError(f"Failed to parse {ALBUM_MANIFEST_FILENAME}: {e}")

    album_table = _table(raw, "album", "album")
    artist_table = _table(raw, "artist", "artist")
    cloudflare = _table(_table(raw, "hosting", "hosting"), "cloudflare", "hosting.cloudflare")

    subdomain = _optional_str(cloudflare, "subdomain", "hosting.cloudflare") or None
    if subdomain is not None and not is_dns_label(subdomain):
        raise ManifestError(f"Invalid subdomain '{subdomain}': must be a lowercase DNS label")

    genre = album_table.get("genre") or []
    if isinstance(genre, str):
        genre = [genre]
    if not isinstance(genre, list) or not all(isinstance(g, str) for g in genre):
        raise ManifestError("[album] genre must be a string or a list of strings")

    return Album(
        title=_require(album_table, "title", "album"),
        artist_name=_require(artist_table, "name", "artist"),
        tracks=_parse_tracks(raw.get("track") or []),
        summary=_optional_str(album_table, "summary", "album") or "",
        release_date=str(album_table["release_date"]) if "release_date" in album_table else None,
        genre=list(genre),
        license=_optional_str(album_table, "license", "album"),
        artist_url=_optional_str(artist_table, "url", "artist"),
        subdomain=subdomain,
    )


def load_album(album_dir) -> Album:
    """
    Load and validate album.toml from an album directory.

    Raises:
        ManifestError: If the file is missing or malformed
    """
    path = Path(album_dir) / ALBUM_MANIFEST_FILENAME
    if not path.exists():
        raise ManifestError(
            f"{ALBUM_MANIFEST_FILENAME} not found in {album_dir}\n"
            "Not an album directory?"
        )
    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ManifestError(f"{ALBUM_MANIFEST_FILENAME} is not valid UTF-8: {e}")
    return parse_album(content)


@dataclass
class AlbumCheck:
    """Readiness findings for an album directory; errors block a deploy."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def check_album_dir(album_dir, album: Album) -> AlbumCheck:
    """
    Check that an album directory is ready to deploy.

    Missing audio files are errors. Placeholder metadata, unsupported audio
    formats and missing cover art are warnings.
    """
    root = Path(album_dir)
    check = AlbumCheck()

    if any(marker in album.title for marker in PLACEHOLDER_MARKERS):
        check.warnings.append("Album title appears to be a placeholder")
    if any(marker in album.artist_name for marker in PLACEHOLDER_MARKERS):
        check.warnings.append("Artist name appears to be a placeholder")
    if "TODO" in album.summary:
        check.warnings.append("Album summary is a placeholder")

    if not album.tracks:
        check.errors.append("No tracks defined in album.toml")
    if not (root / AUDIO_DIR).is_dir():
        check.errors.append(f"Required directory missing: {AUDIO_DIR}/")

    for index, track in enumerate(album.tracks, start=1):
        path = root / track.file
        if not path.is_file():
            check.errors.append(f"Track {index} audio file not found: {track.file}")
        elif path.suffix.lower() not in AUDIO_CONTENT_TYPES:
            check.warnings.append(f"Track {index} ({track.file}) has an unrecognised audio format")

    artwork = root / ARTWORK_DIR
    if not any((artwork / name).exists() for name in COVER_ART_NAMES):
        images = [p for p in artwork.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES] if artwork.is_dir() else []
        if images:
            check.warnings.append("Cover art found but not using a standard name (cover.jpg/cover.png)")
        else:
            check.warnings.append(f"No cover art found in {ARTWORK_DIR}/; add cover.jpg or cover.png")
    return check
