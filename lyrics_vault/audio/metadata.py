"""Audio metadata probing using mutagen.

Extracts title, artist, album, and technical metadata from in-memory audio.
Supports MP3 (ID3), OGG/WebM/FLAC (Vorbis), and MP4/M4A tag formats.
"""

import io
import logging
from dataclasses import dataclass

import mutagen
from mutagen.mp4 import MP4

logger = logging.getLogger(__name__)

# Tag key mappings per format family
_ID3_TAG_MAP: dict[str, str] = {
    "title": "TIT2",
    "artist": "TPE1",
    "album": "TALB",
}

_VORBIS_TAG_MAP: dict[str, str] = {
    "title": "title",
    "artist": "artist",
    "album": "album",
}

_MP4_TAG_MAP: dict[str, str] = {
    "title": "\xa9nam",
    "artist": "\xa9ART",
    "album": "\xa9alb",
}


@dataclass
class AudioMetadata:
    """Container for probed audio metadata."""

    title: str | None = None
    artist: str | None = None
    album: str | None = None
    duration_seconds: float | None = None
    sample_rate: int | None = None
    channels: int | None = None
    bitrate: int | None = None
    format: str | None = None
    size_bytes: int = 0


def _get_first_text(tags: dict | mutagen.Tags | None, key: str) -> str | None:
    """Safely extract a text tag value, handling list-valued tags."""
    if tags is None:
        return None
    value = tags.get(key)
    if value is None:
        return None
    # mutagen often wraps values in list-like objects
    if isinstance(value, list):
        return str(value[0]) if value else None
    return str(value)


def _extract_tags_id3(tags: mutagen.Tags) -> dict[str, str | None]:
    result: dict[str, str | None] = {}
    for field_name, tag_key in _ID3_TAG_MAP.items():
        tag = tags.get(tag_key)
        texts = getattr(tag, "text", None) if tag is not None else None
        result[field_name] = str(texts[0]) if texts else None
    return result


def _extract_tags(audio_file: mutagen.FileType) -> dict[str, str | None]:
    tags = audio_file.tags
    if tags is None:
        return {}
    if isinstance(audio_file, MP4):
        tag_map = _MP4_TAG_MAP
    elif hasattr(tags, "getall"):
        return _extract_tags_id3(tags)
    else:
        tag_map = _VORBIS_TAG_MAP
    return {name: _get_first_text(tags, key) for name, key in tag_map.items()}


def probe_audio(data: bytes, filename: str | None = None) -> AudioMetadata:
    """Probe metadata from raw audio bytes.

    Never raises for unparseable input: an unknown container yields an
    AudioMetadata with only ``size_bytes`` (and ``format`` from the filename)
    populated.

    Args:
        data: Complete audio file contents.
        filename: Optional original filename, used for the format hint.
    """
    meta = AudioMetadata(size_bytes=len(data))
    if filename and "." in filename:
        meta.format = filename.rsplit(".", 1)[-1].lower() or None

    try:
        audio_file = mutagen.File(io.BytesIO(data))
    except Exception:
        logger.warning("mutagen could not parse audio (%d bytes)", len(data))
        return meta

    if audio_file is None:
        logger.debug("mutagen did not recognise audio container (%d bytes)", len(data))
        return meta

    info = audio_file.info
    if info is not None:
        meta.duration_seconds = getattr(info, "length", None)
        meta.sample_rate = getattr(info, "sample_rate", None)
        meta.channels = getattr(info, "channels", None)
        bitrate = getattr(info, "bitrate", None)
        if bitrate is not None:
            meta.bitrate = int(bitrate)

    if meta.format is None and audio_file.mime:
        meta.format = audio_file.mime[0].split("/")[-1]

    tag_data = _extract_tags(audio_file)
    meta.title = tag_data.get("title")
    meta.artist = tag_data.get("artist")
    meta.album = tag_data.get("album")
    return meta
