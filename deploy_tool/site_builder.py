"""
Static site generation for an album directory.

Produces index.html + player.js plus copied artwork and liner notes. Audio is
copied into the site only when no external audio origin is given.
"""

import html
import logging
import shutil
from pathlib import Path
from typing import Optional

from album_core.constants import ARTWORK_DIR, AUDIO_DIR, COVER_ART_NAMES, NOTES_DIR
from album_core.errors import ReleaseKitError
from album_core.manifest import load_album
from album_core.models import Album

logger = logging.getLogger(__name__)

PLAYER_JS = """\
document.addEventListener('DOMContentLoaded', () => {
  const audio = document.getElementById('player');
  const tracks = Array.from(document.querySelectorAll('.track'));
  let current = -1;

  function play(index) {
    if (index < 0 || index >= tracks.length) return;
    tracks.forEach(t => t.classList.remove('playing'));
    current = index;
    tracks[index].classList.add('playing');
    audio.src = tracks[index].dataset.src;
    audio.play();
  }

  tracks.forEach((t, i) => t.addEventListener('click', () => play(i)));
  audio.addEventListener('ended', () => play(current + 1));
});
"""


def detect_cover_art(artwork_dir: Path) -> Optional[str]:
    """Return the file name of the album cover, if one of the usual names exists."""
    for name in COVER_ART_NAMES:
        if (artwork_dir / name).exists():
            return name
    return None


def _copy_tree_files(src: Path, dst: Path) -> int:
    copied = 0
    if src.is_dir():
        for path in sorted(src.iterdir()):
            if path.is_file():
                shutil.copy2(path, dst / path.name)
                copied += 1
    return copied


def esc(text: Optional[str]) -> str:
    return html.escape(text or "", quote=True)


def render_index_html(album: Album, audio_base_url: Optional[str] = None,
                      cover_art: Optional[str] = None) -> str:
    base = audio_base_url.rstrip("/") + "/" if audio_base_url else ""

    rows = []
    for number, track in enumerate(album.tracks, start=1):
        src = f"{base}{AUDIO_DIR}/{track.file_name}"
        rows.append(
            f'      <li class="track" data-src="{esc(src)}">'
            f'<span class="num">{number:02d}</span> '
            f'<span class="title">{esc(track.title)}</span> '
            f'<span class="duration">{esc(track.format_duration())}</span></li>'
        )

    cover = ""
    if cover_art:
        cover = f'    <img class="cover" src="{ARTWORK_DIR}/{esc(cover_art)}" alt="{esc(album.title)} cover">\n'

    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '  <meta charset="utf-8">\n'
        '  <meta name="viewport" content="width=device-width, initial-scale=1">\n'
        f"  <title>{esc(album.title)} - {esc(album.artist_name)}</title>\n"
        "</head>\n"
        "<body>\n"
        "  <main>\n"
        f"{cover}"
        f"    <h1>{esc(album.title)}</h1>\n"
        f'    <h2 class="artist">{esc(album.artist_name)}</h2>\n'
        f'    <p class="summary">{esc(album.summary)}</p>\n'
        "    <ol class=\"tracks\">\n"
        + "\n".join(rows) + "\n"
        "    </ol>\n"
        '    <audio id="player" controls preload="none"></audio>\n'
        "  </main>\n"
        '  <script src="player.js"></script>\n'
        "</body>\n"
        "</html>\n"
    )


def build_static_site(album_dir, output_dir, audio_base_url: Optional[str] = None,
                      album: Optional[Album] = None) -> int:
    """
    Build the album site into output_dir.

    Args:
        album_dir: Album directory containing album.toml
        output_dir: Destination directory (created if missing)
        audio_base_url: Origin serving audio/<file>; None bundles audio with the site
        album: Already-loaded manifest (loaded from album_dir when omitted)

    Returns:
        Number of audio files referenced by the page
    """
    album_dir = Path(album_dir)
    output_dir = Path(output_dir)
    if not album_dir.is_dir():
        raise ReleaseKitError(f"Album directory does not exist: {album_dir}")
    if album is None:
        album = load_album(album_dir)

    for sub in (AUDIO_DIR, ARTWORK_DIR, NOTES_DIR):
        (output_dir / sub).mkdir(parents=True, exist_ok=True)

    referenced = 0
    for track in album.tracks:
        src = album_dir / track.file
        if not src.exists():
            logger.warning("Audio file not found: %s", src)
            continue
        referenced += 1
        if audio_base_url is None:
            shutil.copy2(src, output_dir / AUDIO_DIR / track.file_name)

    artwork = _copy_tree_files(album_dir / ARTWORK_DIR, output_dir / ARTWORK_DIR)
    notes = _copy_tree_files(album_dir / NOTES_DIR, output_dir / NOTES_DIR)
    logger.debug("Copied %d artwork and %d note files", artwork, notes)

    cover_art = detect_cover_art(album_dir / ARTWORK_DIR)
    (output_dir / "index.html").write_text(
        render_index_html(album, audio_base_url, cover_art), encoding="utf-8")
    (output_dir / "player.js").write_text(PLAYER_JS, encoding="utf-8")
    return referenced
