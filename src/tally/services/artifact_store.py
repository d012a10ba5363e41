"""Pack artifact storage and signed download links."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import time
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, urlencode
from uuid import UUID

from tally.config import get_settings
from tally.errors import ValidationError


def build_pack_storage_key(
    firm_id: UUID, pay_run_id: UUID, pack_id: UUID, pack_version: int
) -> str:
    return f"firm/{firm_id}/pay-run/{pay_run_id}/pack/{pack_id}/pack-v{pack_version}.pdf"


class ArtifactStore(Protocol):
    """Where rendered packs live."""

    async def put(self, data: bytes, key: str) -> str:
        """Store ``data`` under ``key`` and return its storage URI."""
        ...

    def sign(self, key: str) -> str:
        """Return a time-limited download URL for ``key``."""
        ...

    async def check(self) -> None:
        """Raise if the store cannot currently accept writes."""
        ...


class LocalArtifactStore:
    """Filesystem-backed store with HMAC-signed download URLs."""

    def __init__(
        self,
        root: str | Path,
        base_url: str,
        secret: str,
        ttl_seconds: int = 900,
    ):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.secret = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls) -> LocalArtifactStore:
        settings = get_settings()
        return cls(
            root=settings.artifact_root,
            base_url=settings.artifact_base_url,
            secret=settings.artifact_signing_secret,
            ttl_seconds=settings.artifact_url_ttl_seconds,
        )

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValidationError("Invalid storage key.")
        return path

    async def put(self, data: bytes, key: str) -> str:
        path = self._path(key)

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(write)
        return f"file://{path}"

    async def check(self) -> None:
        await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)

    def signature(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode("utf-8")
        return hmac.new(self.secret, message, hashlib.sha256).hexdigest()

    def sign(self, key: str, now: float | None = None) -> str:
        expires = int(now if now is not None else time.time()) + self.ttl_seconds
        query = urlencode({"expires": expires, "signature": self.signature(key, expires)})
        return f"{self.base_url}/{quote(key)}?{query}"

    def verify(self, key: str, expires: int, signature: str, now: float | None = None) -> bool:
        """Check a signed URL's parameters; expired links fail."""
        if int(now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(self.signature(key, expires), signature)
