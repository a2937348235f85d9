"""Object storage for uploaded audio and cover art.

Objects live on the local filesystem at ``{storage_root}/objects/{key}``.
Writes are only accepted through signed, time-boxed write grants (see
``auth.jwt.create_storage_grant``); reads are public.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Protocol

import jwt
import magic

from lyrics_vault.audio.metadata import AudioMetadata, probe_audio
from lyrics_vault.auth.jwt import create_storage_grant, decode_storage_grant
from lyrics_vault.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

STORAGE_ROUTE = "/api/v1/storage"

# Containers that libmagic reports outside the audio/* family
_AUDIO_COMPATIBLE_TYPES: frozenset[str] = frozenset({"video/webm", "video/mp4", "application/ogg"})


@dataclass(frozen=True)
class WriteGrant:
    key: str
    url: str
    public_url: str
    content_type: str
    expires_in: int


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size_bytes: int
    content_type: str
    modified_at: datetime
    audio: AudioMetadata | None = None


class ObjectStore(Protocol):
    async def presign_write(
        self, key: str, content_type: str, ttl_seconds: int
    ) -> WriteGrant: ...

    async def delete(self, key: str) -> None: ...

    async def exists(self, key: str) -> bool: ...

    def public_url(self, key: str) -> str: ...


def validate_key(key: str) -> PurePosixPath:
    """Reject keys that are empty, absolute, or escape the object root."""
    if not key or key.startswith("/") or "\\" in key:
        raise ValidationError("key", "must be a relative path")
    path = PurePosixPath(key)
    if any(part in ("", ".", "..") for part in path.parts):
        raise ValidationError("key", "must not contain '.' or '..' segments")
    return path


def _content_family_matches(declared: str, sniffed: str) -> bool:
    family = declared.split("/", 1)[0]
    if family == "audio":
        return sniffed.startswith("audio/") or sniffed in _AUDIO_COMPATIBLE_TYPES
    return sniffed.startswith(f"{family}/")


def _read_head(path: Path, size: int = 4096) -> bytes:
    with path.open("rb") as f:
        return f.read(size)


class LocalObjectStore:
    """Filesystem-backed object store with JWT write grants.

    Args:
        root: Storage root directory; objects go under ``root/objects``.
        public_base_url: Base URL the service is reachable at.
        secret_key: Grant signing key.
        algorithm: Grant signing algorithm.
        max_bytes: Largest accepted object.
    """

    def __init__(
        self,
        root: str | Path,
        public_base_url: str,
        secret_key: str,
        algorithm: str = "HS256",
        max_bytes: int = 100 * 1024 * 1024,
    ) -> None:
        self._objects_dir = Path(root) / "objects"
        self._base_url = public_base_url.rstrip("/")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._max_bytes = max_bytes

    def _path(self, key: str) -> Path:
        return self._objects_dir.joinpath(*validate_key(key).parts)

    def public_url(self, key: str) -> str:
        validate_key(key)
        return f"{self._base_url}{STORAGE_ROUTE}/{key}"

    async def presign_write(
        self, key: str, content_type: str, ttl_seconds: int = 3600
    ) -> WriteGrant:
        if ttl_seconds <= 0:
            raise ValidationError("ttl_seconds", "must be positive")
        public_url = self.public_url(key)
        token = create_storage_grant(
            key,
            content_type,
            ttl_seconds,
            secret_key=self._secret_key,
            algorithm=self._algorithm,
        )
        return WriteGrant(
            key=key,
            url=f"{public_url}?grant={token}",
            public_url=public_url,
            content_type=content_type,
            expires_in=ttl_seconds,
        )

    async def write_with_grant(self, key: str, grant: str, data: bytes) -> ObjectInfo:
        """Store ``data`` under ``key`` if ``grant`` authorises it.

        Raises:
            ValidationError: Invalid/expired grant, key mismatch, empty or
                oversized body, or content that does not match the granted
                content type.
        """
        path = self._path(key)
        try:
            claims = decode_storage_grant(
                grant, secret_key=self._secret_key, algorithm=self._algorithm
            )
        except jwt.ExpiredSignatureError:
            raise ValidationError("grant", "write grant has expired") from None
        except jwt.InvalidTokenError as exc:
            raise ValidationError("grant", str(exc)) from None

        if claims.get("key") != key:
            raise ValidationError("grant", "grant was issued for a different key")
        if not data:
            raise ValidationError("file", "empty upload")
        if len(data) > self._max_bytes:
            raise ValidationError("file", f"exceeds {self._max_bytes} bytes")

        declared = str(claims.get("content_type", ""))
        sniffed = magic.from_buffer(data[:4096], mime=True)
        if not _content_family_matches(declared, sniffed):
            raise ValidationError(
                "file", f"content looks like {sniffed}, grant allows {declared}"
            )

        await asyncio.to_thread(self._write_atomic, path, data)
        logger.info("Stored object %s (%d bytes, %s)", key, len(data), sniffed)
        return ObjectInfo(
            key=key,
            size_bytes=len(data),
            content_type=sniffed,
            modified_at=datetime.now(UTC),
        )

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.part")
        tmp.write_bytes(data)
        os.replace(tmp, path)

    async def read(self, key: str) -> tuple[bytes, str]:
        """Return ``(data, content_type)``. Raises NotFoundError."""
        path = self._path(key)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise NotFoundError("object", key) from None
        return data, magic.from_buffer(data[:4096], mime=True)

    async def locate(self, key: str) -> tuple[Path, str]:
        """Return ``(path on disk, sniffed content type)`` for streaming reads."""
        path = self._path(key)
        try:
            head = await asyncio.to_thread(_read_head, path)
        except (FileNotFoundError, IsADirectoryError):
            raise NotFoundError("object", key) from None
        return path, magic.from_buffer(head, mime=True)

    async def head(self, key: str) -> ObjectInfo:
        """Object metadata; audio objects include probed tags and duration."""
        data, content_type = await self.read(key)
        stat = await asyncio.to_thread(self._path(key).stat)
        audio = None
        if _content_family_matches("audio/*", content_type):
            audio = probe_audio(data, filename=PurePosixPath(key).name)
        return ObjectInfo(
            key=key,
            size_bytes=stat.st_size,
            content_type=content_type,
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
            audio=audio,
        )

    async def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing object is not an error."""
        path = self._path(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.info("Deleted object %s", key)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).is_file)
