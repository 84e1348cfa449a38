# cartsync/data/kv_store.py
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Protocol

import redis

from cartsync.utils.retry import redis_retry
from cartsync.utils.settings import (
    REDIS_NAMESPACE,
    REDIS_TTL_SECONDS,
    REDIS_URL,
    STORE_BACKEND,
    STORE_FILE_PATH,
)
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


class KeyValueStore(Protocol):
    """Odpowiednik localStorage: klucz -> string."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Trzyma dane tylko w pamieci procesu (sesja, testy)."""

    def __init__(self, initial: Dict[str, str] | None = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class FileKeyValueStore:
    """
    Caly store w jednym pliku JSON.
    Zapis atomowy: plik tymczasowy + os.replace.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".kv-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)


class RedisKeyValueStore:
    """
    -klucze z prefiksem namespace (jeden redis dla wielu sklepow/sesji)
    -opcjonalny TTL
    -retry tenacity na RedisError
    """

    def __init__(
        self,
        url: str | None = None,
        namespace: str | None = None,
        ttl: int | None = None,
    ):
        self.redis = redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )
        self.namespace = REDIS_NAMESPACE if namespace is None else namespace
        self.ttl = REDIS_TTL_SECONDS if ttl is None else ttl

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    @redis_retry()
    def get(self, key: str) -> str | None:
        return self.redis.get(self._key(key))

    @redis_retry()
    def set(self, key: str, value: str) -> None:
        #ex=None -> klucz bez wygasania
        self.redis.set(self._key(key), value, ex=self.ttl or None)

    @redis_retry()
    def remove(self, key: str) -> None:
        self.redis.delete(self._key(key))


def build_store(backend: str | None = None, **options) -> KeyValueStore:
    backend = (backend or STORE_BACKEND).lower()
    logger.info(f"Using {backend} key-value store")

    if backend == "memory":
        return MemoryKeyValueStore()
    if backend == "file":
        return FileKeyValueStore(options.get("path") or STORE_FILE_PATH)
    if backend == "redis":
        return RedisKeyValueStore(
            url=options.get("url"),
            namespace=options.get("namespace"),
            ttl=options.get("ttl"),
        )
    raise ValueError(f"Unknown store backend: {backend}")
