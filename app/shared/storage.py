from __future__ import annotations

import os
import secrets
import string
import tempfile
import time
from typing import Optional
from urllib.parse import urlparse

import requests
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

ARTIFACT_SALT = "artifact-url"
ARTIFACT_ROUTE = "/artifacts/"
CERTIFICATE_PREFIX = "certificates"
TEMPLATE_PREFIX = "templates"
SIGNATURE_PREFIX = "signatures"
FONT_PREFIX = "fonts"
ASSET_PREFIXES = (TEMPLATE_PREFIX, SIGNATURE_PREFIX, FONT_PREFIX)
FETCH_TIMEOUT_SECONDS = 15

_BASE36 = string.digits + string.ascii_lowercase


class ArtifactNotFound(LookupError):
    pass


class AssetFetchError(IOError):
    """Raised when an image or font referenced by a template cannot be loaded."""


def ensure_dir(path: str) -> None:
    """Create directory if missing (mkdir -p equivalent)."""
    os.makedirs(path, exist_ok=True)


def write_atomic(path: str, data, mode: str = "wb") -> None:
    """Write data to a temporary file then atomically rename to target path."""
    dir_path = os.path.dirname(path)
    ensure_dir(dir_path)
    fd, tmp_path = tempfile.mkstemp(dir=dir_path)
    try:
        with os.fdopen(fd, mode) as f:
            f.write(data)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def certificate_key(name: Optional[str] = None) -> str:
    """Storage key for a generated certificate image."""
    if name:
        return f"{CERTIFICATE_PREFIX}/{name}.png"
    return f"{CERTIFICATE_PREFIX}/{int(time.time() * 1000)}-{random_suffix()}.png"


def asset_key(prefix: str, filename: str) -> str:
    """Storage key for an uploaded template asset, e.g. ``fonts/<ms>-<name>``."""
    if prefix not in ASSET_PREFIXES:
        raise ValueError(f"unknown asset namespace: {prefix!r}")
    return f"{prefix}/{int(time.time() * 1000)}-{filename}"


def is_asset_key(ref: str) -> bool:
    head, sep, tail = ref.partition("/")
    return bool(sep and tail) and head in ASSET_PREFIXES


class LocalArtifactStore:
    """Filesystem object store under ``root`` with signed, expiring URLs.

    Keys are relative POSIX paths such as ``certificates/<id>.png``. The
    returned URLs are opaque to callers and stop resolving after
    ``max_age`` seconds; the key is what gets persisted for re-signing.
    """

    def __init__(
        self,
        root: str,
        *,
        secret_key: str,
        public_base_url: str = "",
        max_age: int = 7 * 24 * 3600,
    ):
        self.root = os.path.realpath(root)
        self.public_base_url = (public_base_url or "").rstrip("/")
        self.max_age = max_age
        self._serializer = URLSafeTimedSerializer(secret_key, salt=ARTIFACT_SALT)

    def _path_for(self, key: str) -> str:
        cleaned = (key or "").strip().lstrip("/")
        if not cleaned:
            raise ArtifactNotFound(key)
        resolved = os.path.realpath(os.path.join(self.root, cleaned))
        if not resolved.startswith(f"{self.root}{os.sep}"):
            raise ArtifactNotFound(key)
        return resolved

    def put(self, key: str, data: bytes) -> str:
        write_atomic(self._path_for(key), data)
        return self.url_for(key)

    def read(self, key: str) -> bytes:
        path = self._path_for(key)
        if not os.path.isfile(path):
            raise ArtifactNotFound(key)
        with open(path, "rb") as fh:
            return fh.read()

    def exists(self, key: str) -> bool:
        try:
            return os.path.isfile(self._path_for(key))
        except ArtifactNotFound:
            return False

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        if os.path.isfile(path):
            os.remove(path)

    def url_for(self, key: str) -> str:
        token = self._serializer.dumps(key)
        return f"{self.public_base_url}{ARTIFACT_ROUTE}{token}"

    def key_from_token(self, token: str, *, enforce_expiry: bool = True) -> str:
        try:
            if enforce_expiry:
                return self._serializer.loads(token, max_age=self.max_age)
            return self._serializer.loads(token)
        except SignatureExpired as exc:
            raise ArtifactNotFound("expired") from exc
        except BadSignature as exc:
            raise ArtifactNotFound("bad signature") from exc

    def key_from_url(self, url: str) -> Optional[str]:
        """Return the key behind one of our own signed URLs, ignoring expiry.

        Template assets are referenced by the URL handed out at upload time;
        internal reads must keep working after that URL has expired.
        """
        path = urlparse(url or "").path
        if ARTIFACT_ROUTE not in path:
            return None
        token = path.rsplit(ARTIFACT_ROUTE, 1)[-1]
        try:
            return self.key_from_token(token, enforce_expiry=False)
        except ArtifactNotFound:
            return None

    def iter_keys(self, prefix: str = ""):
        base = self._path_for(prefix) if prefix else self.root
        if not os.path.isdir(base):
            return
        for dirpath, dirs, files in os.walk(base):
            dirs[:] = [d for d in dirs if not d.startswith("_")]
            for name in files:
                full = os.path.join(dirpath, name)
                yield os.path.relpath(full, self.root).replace(os.sep, "/")


def fetch_asset(ref: str, store: Optional[LocalArtifactStore] = None) -> bytes:
    """Load the bytes behind a template asset reference.

    ``ref`` may be one of our signed artifact URLs, a bare key under one of
    the upload namespaces or an ``http(s)`` URL. Filesystem paths are
    rejected.
    """
    raw = (ref or "").strip()
    if not raw:
        raise AssetFetchError("empty asset reference")
    if store is not None:
        key = store.key_from_url(raw)
        if key is None and is_asset_key(raw):
            key = raw
        if key:
            try:
                return store.read(key)
            except ArtifactNotFound as exc:
                raise AssetFetchError(f"artifact missing: {key}") from exc
    if urlparse(raw).scheme.lower() not in {"http", "https"}:
        raise AssetFetchError(f"unsupported asset reference: {raw}")
    try:
        resp = requests.get(raw, timeout=FETCH_TIMEOUT_SECONDS)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise AssetFetchError(f"{raw}: {exc}") from exc
    return resp.content
