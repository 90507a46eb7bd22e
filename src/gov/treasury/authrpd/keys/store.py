"""
Signing Key Store

Manages one ES256 (ECDSA P-256) signing keypair per monthly period. A period's
key material is generated lazily on first use and never regenerated or
mutated afterwards.

Two implementations share the ``KeyStore`` interface:
- FileSystemKeyStore: production store, one directory per period holding
  ``private.pem`` (mode 0600) and ``public.pem`` (mode 0644)
- MemoryKeyStore: process-local store for tests and throwaway deployments

Both cache loaded handles per process. Filesystem work runs in a worker thread
so it never blocks the event loop.
"""

import asyncio
import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List

from jwcrypto import jwk

from gov.treasury.authrpd.errors import KeyNotFound
from gov.treasury.authrpd.keys.periods import is_period_id

logger = logging.getLogger(__name__)

SIGNING_ALGORITHM = "ES256"
SIGNING_CURVE = "P-256"
PRIVATE_KEY_FILE = "private.pem"
PUBLIC_KEY_FILE = "public.pem"


@dataclass(frozen=True)
class KeyHandle:
    """Signing key for one period. ``key`` holds the private JWK."""

    kid: str
    key: jwk.JWK
    algorithm: str = SIGNING_ALGORITHM

    def public_jwk(self) -> Dict[str, Any]:
        """Publishable representation of the public half."""
        public = self.key.export_public(as_dict=True)
        return {
            "kty": public["kty"],
            "use": "sig",
            "kid": self.kid,
            "crv": public["crv"],
            "x": public["x"],
            "y": public["y"],
            "alg": self.algorithm,
        }


def generate_period_key(kid: str) -> jwk.JWK:
    return jwk.JWK.generate(
        kty="EC", crv=SIGNING_CURVE, kid=kid, alg=SIGNING_ALGORITHM, use="sig"
    )


def with_key_id(key: jwk.JWK, kid: str, private_key: bool) -> jwk.JWK:
    """Re-import ``key`` with the period's kid, alg and use parameters attached."""
    params = key.export(private_key=private_key, as_dict=True)
    params.update({"kid": kid, "alg": SIGNING_ALGORITHM, "use": "sig"})
    return jwk.JWK(**params)


class KeyStore(ABC):
    """Interface for per-period signing key storage."""

    @abstractmethod
    async def ensure_period_key(self, period_id: str) -> KeyHandle:
        """
        Return the key for ``period_id``, generating and persisting it if absent.

        Idempotent: existing material is loaded, never replaced.
        """

    @abstractmethod
    async def load(self, period_id: str) -> KeyHandle:
        """Return the key for ``period_id`` or raise ``KeyNotFound``."""

    @abstractmethod
    async def list_periods(self) -> List[str]:
        """Return existing period ids, most recent first."""

    async def close(self) -> None:
        pass


class MemoryKeyStore(KeyStore):
    def __init__(self) -> None:
        self._keys: Dict[str, KeyHandle] = {}
        self._lock = asyncio.Lock()

    async def ensure_period_key(self, period_id: str) -> KeyHandle:
        if not is_period_id(period_id):
            raise ValueError(f"Invalid period id: {period_id}")
        async with self._lock:
            handle = self._keys.get(period_id)
            if handle is None:
                handle = KeyHandle(kid=period_id, key=generate_period_key(period_id))
                self._keys[period_id] = handle
                logger.info("Generated in-memory signing key for %s", period_id)
            return handle

    async def load(self, period_id: str) -> KeyHandle:
        handle = self._keys.get(period_id)
        if handle is None:
            raise KeyNotFound(period_id)
        return handle

    async def list_periods(self) -> List[str]:
        return sorted(self._keys.keys(), reverse=True)

    async def close(self) -> None:
        self._keys.clear()


class FileSystemKeyStore(KeyStore):
    """
    Key store rooted at ``base_dir``.

    Layout:
        <base_dir>/<YYYY-MM>/private.pem   PKCS#8, mode 0600
        <base_dir>/<YYYY-MM>/public.pem    SubjectPublicKeyInfo, mode 0644

    New periods are written into a hidden temporary directory and renamed into
    place, so a concurrent process either sees a complete period directory or
    none at all. Directory names that are not ``YYYY-MM`` are ignored.
    """

    def __init__(self, base_dir: str) -> None:
        self.base_dir = os.path.abspath(base_dir)
        self._handles: Dict[str, KeyHandle] = {}
        self._lock = asyncio.Lock()

    def _period_dir(self, period_id: str) -> str:
        return os.path.join(self.base_dir, period_id)

    async def ensure_period_key(self, period_id: str) -> KeyHandle:
        if not is_period_id(period_id):
            raise ValueError(f"Invalid period id: {period_id}")

        handle = self._handles.get(period_id)
        if handle is not None:
            return handle

        async with self._lock:
            handle = self._handles.get(period_id)
            if handle is not None:
                return handle

            generated = await asyncio.to_thread(self._write_period, period_id)
            if generated:
                logger.info("Generated signing key pair for %s", period_id)
            else:
                logger.info("Key pair for %s already exists, skipping generation", period_id)

            handle = await asyncio.to_thread(self._read_period, period_id)
            self._handles[period_id] = handle
            return handle

    async def load(self, period_id: str) -> KeyHandle:
        if not is_period_id(period_id):
            raise KeyNotFound(period_id)

        handle = self._handles.get(period_id)
        if handle is not None:
            return handle

        handle = await asyncio.to_thread(self._read_period, period_id)
        self._handles[period_id] = handle
        return handle

    async def list_periods(self) -> List[str]:
        return await asyncio.to_thread(self._scan_periods)

    async def close(self) -> None:
        self._handles.clear()

    def _scan_periods(self) -> List[str]:
        if not os.path.isdir(self.base_dir):
            return []
        with os.scandir(self.base_dir) as entries:
            periods = [
                entry.name
                for entry in entries
                if entry.is_dir() and is_period_id(entry.name)
            ]
        return sorted(periods, reverse=True)

    def _has_period(self, period_id: str) -> bool:
        period_dir = self._period_dir(period_id)
        return os.path.isfile(
            os.path.join(period_dir, PRIVATE_KEY_FILE)
        ) and os.path.isfile(os.path.join(period_dir, PUBLIC_KEY_FILE))

    def _write_period(self, period_id: str) -> bool:
        """Create key files for ``period_id``. Returns False if they already existed."""
        if self._has_period(period_id):
            return False

        os.makedirs(self.base_dir, exist_ok=True)
        key = generate_period_key(period_id)
        staging_dir = tempfile.mkdtemp(prefix=f".{period_id}-", dir=self.base_dir)
        try:
            self._write_file(
                os.path.join(staging_dir, PRIVATE_KEY_FILE),
                key.export_to_pem(private_key=True, password=None),
                0o600,
            )
            self._write_file(
                os.path.join(staging_dir, PUBLIC_KEY_FILE),
                key.export_to_pem(),
                0o644,
            )
            os.chmod(staging_dir, 0o755)
            try:
                os.rename(staging_dir, self._period_dir(period_id))
            except OSError:
                # Another process won the race; its material is authoritative.
                if self._has_period(period_id):
                    return False
                raise
            staging_dir = None
            return True
        finally:
            if staging_dir is not None:
                shutil.rmtree(staging_dir, ignore_errors=True)

    @staticmethod
    def _write_file(path: str, data: bytes, mode: int) -> None:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
        with os.fdopen(fd, "wb") as fl:
            fl.write(data)
        os.chmod(path, mode)

    def _read_period(self, period_id: str) -> KeyHandle:
        if not self._has_period(period_id):
            raise KeyNotFound(period_id)

        with open(os.path.join(self._period_dir(period_id), PRIVATE_KEY_FILE), "rb") as fl:
            private_pem = fl.read()

        key = with_key_id(
            jwk.JWK.from_pem(private_pem, password=None), period_id, private_key=True
        )
        return KeyHandle(kid=period_id, key=key)
