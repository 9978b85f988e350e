"""Hierarchical key-value store used as the shared coordination point.

Keys are ``/``-separated paths. Two implementations are provided: an
in-process store for tests and single-process use, and a client for the etcd
v2 HTTP API.
"""

import threading
from abc import ABC, abstractmethod
from typing import NamedTuple

import requests

from pgcluster.config import StoreConfig
from pgcluster.exceptions import KeyExistsError, KeyNotFoundError, StoreError
from pgcluster.logging_config import get_logger

logger = get_logger(__name__)

ETCD_KEY_NOT_FOUND = 100
ETCD_NODE_EXISTS = 105


def normalize_key(key: str) -> str:
    """Return ``key`` with a single leading slash and no trailing slash."""
    parts = [p for p in key.split("/") if p]
    if not parts:
        raise StoreError(f"Invalid key: '{key}'")
    return "/" + "/".join(parts)


class KVEntry(NamedTuple):
    """A direct child of a directory key."""

    key: str
    value: str | None
    is_dir: bool

    @property
    def name(self) -> str:
        return self.key.rsplit("/", 1)[-1]


class KVStore(ABC):
    """Interface of the shared store."""

    @abstractmethod
    def get(self, key: str) -> str:
        """Return the value of a leaf key, raising KeyNotFoundError if absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Create or overwrite a leaf key."""

    @abstractmethod
    def create(self, key: str, value: str) -> None:
        """Atomically create a leaf key, raising KeyExistsError if present."""

    @abstractmethod
    def delete(self, key: str, recursive: bool = False) -> None:
        """Delete a leaf key, or a whole directory when ``recursive``."""

    @abstractmethod
    def children(self, key: str) -> list[KVEntry]:
        """List the direct children of a directory key."""

    def exists(self, key: str) -> bool:
        try:
            self.get(key)
            return True
        except KeyNotFoundError:
            return False
        except StoreError:
            # Directories are not readable as leaves but still exist
            try:
                self.children(key)
                return True
            except KeyNotFoundError:
                return False


class MemoryKVStore(KVStore):
    """Thread-safe in-process store."""

    def __init__(self):
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def _is_dir(self, key: str) -> bool:
        prefix = key + "/"
        return any(k.startswith(prefix) for k in self._data)

    def get(self, key: str) -> str:
        key = normalize_key(key)
        with self._lock:
            if key in self._data:
                return self._data[key]
            if self._is_dir(key):
                raise StoreError(f"Key is a directory: {key}")
            raise KeyNotFoundError(f"Key not found: {key}")

    def set(self, key: str, value: str) -> None:
        key = normalize_key(key)
        with self._lock:
            if self._is_dir(key):
                raise StoreError(f"Cannot overwrite directory with a value: {key}")
            self._data[key] = str(value)

    def create(self, key: str, value: str) -> None:
        key = normalize_key(key)
        with self._lock:
            if key in self._data or self._is_dir(key):
                raise KeyExistsError(f"Key already exists: {key}")
            self._data[key] = str(value)

    def delete(self, key: str, recursive: bool = False) -> None:
        key = normalize_key(key)
        with self._lock:
            if key in self._data:
                del self._data[key]
                return
            if not self._is_dir(key):
                raise KeyNotFoundError(f"Key not found: {key}")
            if not recursive:
                raise StoreError(f"Key is a directory, use recursive delete: {key}")
            prefix = key + "/"
            for k in [k for k in self._data if k.startswith(prefix)]:
                del self._data[k]

    def children(self, key: str) -> list[KVEntry]:
        key = normalize_key(key)
        prefix = key + "/"
        with self._lock:
            entries: dict[str, KVEntry] = {}
            for k, v in self._data.items():
                if not k.startswith(prefix):
                    continue
                name = k[len(prefix) :].split("/", 1)[0]
                child_key = prefix + name
                if child_key == k:
                    entries[child_key] = KVEntry(child_key, v, False)
                else:
                    entries[child_key] = KVEntry(child_key, None, True)
            if not entries:
                raise KeyNotFoundError(f"Directory not found: {key}")
            return [entries[k] for k in sorted(entries)]


class EtcdKVStore(KVStore):
    """Client for the etcd v2 ``/v2/keys`` HTTP API."""

    def __init__(self, endpoint: str, timeout: float = 5.0):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout

    def _url(self, key: str) -> str:
        return f"{self.endpoint}/v2/keys{normalize_key(key)}"

    def _call(self, method: str, key: str, **kwargs) -> dict:
        url = self._url(key)
        try:
            response = getattr(requests, method)(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"etcd {method.upper()} {url} failed: {e}")
            raise StoreError(
                f"Failed to reach key-value store at {self.endpoint}",
                f"{method.upper()} {key}: {e}",
            )

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            error_code = body.get("errorCode")
            message = body.get("message", response.text)
            if error_code == ETCD_KEY_NOT_FOUND or response.status_code == 404:
                raise KeyNotFoundError(f"Key not found: {key}")
            if error_code == ETCD_NODE_EXISTS:
                raise KeyExistsError(f"Key already exists: {key}")
            raise StoreError(
                f"Key-value store rejected {method.upper()} {key}",
                f"HTTP {response.status_code}: {message}",
            )
        return body

    def get(self, key: str) -> str:
        node = self._call("get", key).get("node", {})
        if node.get("dir"):
            raise StoreError(f"Key is a directory: {key}")
        return node.get("value", "")

    def set(self, key: str, value: str) -> None:
        self._call("put", key, data={"value": str(value)})

    def create(self, key: str, value: str) -> None:
        self._call("put", key, data={"value": str(value)}, params={"prevExist": "false"})

    def delete(self, key: str, recursive: bool = False) -> None:
        # etcd answers errorCode 102 (not a file) for a plain delete of a directory
        params = {"recursive": "true"} if recursive else None
        self._call("delete", key, params=params)

    def children(self, key: str) -> list[KVEntry]:
        node = self._call("get", key).get("node", {})
        if not node.get("dir"):
            raise KeyNotFoundError(f"Directory not found: {key}")
        entries = [
            KVEntry(child["key"], child.get("value"), bool(child.get("dir")))
            for child in node.get("nodes", [])
        ]
        return sorted(entries, key=lambda e: e.key)


def build_store(config: StoreConfig) -> KVStore:
    """Create the store selected by configuration."""
    if config.kind == "memory":
        logger.info("Using in-process key-value store")
        return MemoryKVStore()
    logger.info(f"Using etcd key-value store at {config.endpoint}")
    return EtcdKVStore(config.endpoint, timeout=config.timeout)
