"""
Data models for albums, deployment targets, and deployment results.

This module defines the core data structures shared by the manifest loader,
the Cloudflare client and the deployment orchestrator.
"""

from dataclasses import dataclass, asdict, field
from enum import Enum
from pathlib import Path
from typing import List, Dict, Optional, Any

from album_core.constants import (
    AUDIO_CONTENT_TYPES, AUDIO_DIR, BUCKET_SUFFIX, DEFAULT_CONTENT_TYPE,
    PAGES_HOSTNAME_TEMPLATE,
)
from album_core.errors import ValidationError


def slugify(text: str) -> str:
    """
    Reduce free text to a URL-safe slug.

    Only ASCII letters and digits survive. Whitespace, '-' and '_' act as
    separators and collapse into a single hyphen; everything else (punctuation,
    accented letters, emoji) is dropped outright.
    """
    chars = []
    for c in text.lower():
        if c.isascii() and c.isalnum():
            chars.append(c)
        elif c.isspace() or c in "-_":
            chars.append("-")
    return "-".join(part for part in "".join(chars).split("-") if part)


def derive_name(artist: str, album: str) -> str:
    """Derive the remote project name: ``{artist-slug}-{album-slug}``."""
    return f"{slugify(artist)}-{slugify(album)}"


def content_type_for(path) -> str:
    """Map an audio file extension to the Content-Type served from storage."""
    return AUDIO_CONTENT_TYPES.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


class FailurePolicy(Enum):
    """How a failing remote call affects the deployment."""
    FATAL = "fatal"
    BEST_EFFORT = "best_effort"


@dataclass(frozen=True)
class DeploymentTarget:
    """
    Identifies the remote Pages project and its companion R2 bucket.

    Attributes:
        artist: Artist name as written in album.toml
        album: Album title as written in album.toml
    """
    artist: str
    album: str

    @property
    def name(self) -> str:
        return derive_name(self.artist, self.album)

    @property
    def bucket_name(self) -> str:
        return f"{self.name}{BUCKET_SUFFIX}"

    @property
    def pages_hostname(self) -> str:
        return PAGES_HOSTNAME_TEMPLATE.format(project=self.name)

    @property
    def default_url(self) -> str:
        return f"https://{self.pages_hostname}"

    def is_valid(self) -> bool:
        name = self.name
        return bool(name) and name != "-"

    def validate(self) -> "DeploymentTarget":
        """Raise ValidationError when the names slugify to nothing usable."""
        if not self.is_valid():
            raise ValidationError(
                "Invalid album/artist names - cannot derive project name.\n"
                f"Album: '{self.album}', Artist: '{self.artist}'"
            )
        return self


@dataclass(frozen=True)
class RemoteCredentials:
    """
    Cloudflare credentials stored locally on each machine.

    Attributes:
        api_token: API token with Pages, R2 and DNS permissions
        account_id: Cloudflare account ID (32 hex chars)
        base_domain: Domain on Cloudflare DNS for custom subdomains (optional)
        r2_access_key_id: S3-compatible access key for R2 (optional)
        r2_secret_access_key: S3-compatible secret for R2 (optional)
    """
    api_token: str
    account_id: str
    base_domain: Optional[str] = None
    r2_access_key_id: Optional[str] = None
    r2_secret_access_key: Optional[str] = None

    @property
    def has_object_storage(self) -> bool:
        return bool(self.r2_access_key_id and self.r2_secret_access_key)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the [cloudflare] table, leaving out unset fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RemoteCredentials':
        import dataclasses
        field_names = {f.name for f in dataclasses.fields(cls)}
        filtered = {k: v for k, v in data.items() if k in field_names}
        return cls(**filtered)


class UploadState(Enum):
    """Lifecycle of a single track upload."""
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRY_WAIT = "retry_wait"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_ALLOWED_TRANSITIONS = {
    UploadState.PENDING: {UploadState.IN_FLIGHT},
    UploadState.IN_FLIGHT: {UploadState.SUCCEEDED, UploadState.RETRY_WAIT, UploadState.FAILED},
    UploadState.RETRY_WAIT: {UploadState.IN_FLIGHT},
    UploadState.SUCCEEDED: set(),
    UploadState.FAILED: set(),
}


@dataclass
class UploadTask:
    """
    One audio file headed for the R2 bucket.

    Attributes:
        source_path: Local file to upload
        key: Destination object key (audio/<filename>)
        content_type: MIME type derived from the extension
        track_title: Title used when reporting failures
        attempts: Number of PUTs issued so far
        state: Current UploadState
        last_error: Final (or most recent) error message
    """
    source_path: Path
    key: str
    content_type: str
    track_title: str
    attempts: int = 0
    state: UploadState = UploadState.PENDING
    last_error: Optional[str] = None

    @classmethod
    def for_file(cls, source_path: Path, track_title: str) -> 'UploadTask':
        source_path = Path(source_path)
        return cls(
            source_path=source_path,
            key=f"{AUDIO_DIR}/{source_path.name}",
            content_type=content_type_for(source_path),
            track_title=track_title,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in (UploadState.SUCCEEDED, UploadState.FAILED)

    def transition(self, new_state: UploadState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(f"Illegal upload transition {self.state.value} -> {new_state.value} for {self.key}")
        self.state = new_state


@dataclass
class DeploymentWarning:
    """A best-effort step that failed without aborting the deployment."""
    step: str
    message: str
    hint: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.step}: {self.message}"


@dataclass
class DeploymentOutcome:
    """Summary of one publish run, shown to the operator and not persisted."""
    project_name: str
    live_url: str
    custom_domain_url: Optional[str] = None
    audio_base_url: Optional[str] = None
    project_created: bool = False
    uploaded_tracks: int = 0
    skipped_tracks: List[str] = field(default_factory=list)
    warnings: List[DeploymentWarning] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)


# Remote resources, parsed from API payloads

@dataclass
class PagesProject:
    name: str
    subdomain: Optional[str] = None
    domains: List[str] = field(default_factory=list)
    created_on: Optional[str] = None
    production_branch: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PagesProject':
        return cls(
            name=data['name'],
            subdomain=data.get('subdomain'),
            domains=list(data.get('domains') or []),
            created_on=data.get('created_on'),
            production_branch=data.get('production_branch'),
        )


@dataclass
class R2Bucket:
    name: str
    creation_date: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'R2Bucket':
        return cls(name=data['name'], creation_date=data.get('creation_date'))


@dataclass
class DnsZone:
    id: str
    name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DnsZone':
        return cls(id=data['id'], name=data.get('name', ''))


@dataclass
class DnsRecord:
    type: str
    name: str
    content: str
    proxied: bool = True
    id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "name": self.name, "content": self.content, "proxied": self.proxied}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DnsRecord':
        return cls(
            type=data.get('type', ''),
            name=data.get('name', ''),
            content=data.get('content', ''),
            proxied=bool(data.get('proxied', False)),
            id=data.get('id'),
        )


@dataclass
class RemoteObject:
    key: str
    size: int = 0


# Album manifest

@dataclass
class AlbumTrack:
    """
    A track entry from album.toml.

    Attributes:
        file: Path relative to the album directory (e.g. audio/01-intro.flac)
        title: Track title
        duration: Duration in seconds (optional)
    """
    file: str
    title: str
    duration: Optional[int] = None

    @property
    def file_name(self) -> str:
        return Path(self.file).name or "unknown"

    def format_duration(self) -> str:
        if self.duration is None:
            return "?:??"
        return f"{self.duration // 60}:{self.duration % 60:02d}"


@dataclass
class Album:
    """In-memory form of album.toml."""
    title: str
    artist_name: str
    tracks: List[AlbumTrack] = field(default_factory=list)
    summary: str = ""
    release_date: Optional[str] = None
    genre: List[str] = field(default_factory=list)
    license: Optional[str] = None
    artist_url: Optional[str] = None
    subdomain: Optional[str] = None

    @property
    def target(self) -> DeploymentTarget:
        return DeploymentTarget(artist=self.artist_name, album=self.title)
