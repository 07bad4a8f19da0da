"""Creation, validation and revocation of hashed API keys."""

from __future__ import annotations

import hashlib
import re
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

_KEY_PREFIX = "apikey:"
_RATE_PREFIX = "apikey_rl:"
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def hash_key(key: str) -> str:
    """SHA-256 hex digest of a raw key; only this digest is stored."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def generate_key(length: int) -> str:
    """A random key of length bytes, hex encoded."""
    return secrets.token_hex(length)


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _leading_int(value: Any) -> int:
    match = _LEADING_INT.match(_text(value))
    return int(match.group(1)) if match else 0


@dataclass
class APIKey:
    """A newly created key; the raw value is only available at creation."""

    key: str
    name: str
    created_at: datetime
    expires_at: datetime | None = None


class APIKeyService:
    """Stores API keys by hash in a Redis-like store."""

    def __init__(self, store: Any, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self._clock = clock

    def create_key(self, name: str, ttl_days: int = 0) -> APIKey:
        """Create a key; with ttl_days > 0 it expires after that many days."""
        raw_key = generate_key(32)
        store_key = _KEY_PREFIX + hash_key(raw_key)
        created_at = datetime.fromtimestamp(self._clock(), timezone.utc)
        key = APIKey(key=raw_key, name=name, created_at=created_at)

        data: dict[str, Any] = {"name": name, "created_at": int(created_at.timestamp())}
        if ttl_days > 0:
            key.expires_at = created_at + timedelta(days=ttl_days)
            data["expires_at"] = int(key.expires_at.timestamp())
            self.store.hset(store_key, mapping=data)
            self.store.expire(store_key, int((key.expires_at - created_at).total_seconds()))
        else:
            self.store.hset(store_key, mapping=data)
        return key

    def validate_key(self, raw_key: str) -> bool:
        """Whether the key exists and has not expired; expired keys are removed."""
        store_key = _KEY_PREFIX + hash_key(raw_key)
        data = self.store.hgetall(store_key)
        if not data:
            return False
        fields = {_text(k): v for k, v in data.items()}
        if "expires_at" in fields:
            if int(self._clock()) > _leading_int(fields["expires_at"]):
                self.store.delete(store_key)
                return False
        return True

    def revoke_key(self, raw_key: str) -> None:
        """Delete a key."""
        self.store.delete(_KEY_PREFIX + hash_key(raw_key))

    def list_keys(self) -> list[dict[str, str]]:
        """Stored metadata of every key, each with its hash under "hash"."""
        result = []
        for store_key in self.store.keys(_KEY_PREFIX + "*"):
            store_key = _text(store_key)
            data = {_text(k): _text(v) for k, v in self.store.hgetall(store_key).items()}
            data["hash"] = store_key[len(_KEY_PREFIX):]
            result.append(data)
        return result

    def set_key_rate_limit(self, raw_key: str, requests: int, window_seconds: int) -> None:
        """Set a per-key limit of requests per window."""
        self.store.hset(
            _RATE_PREFIX + hash_key(raw_key),
            mapping={"requests": requests, "window": window_seconds},
        )

    def get_key_rate_limit(self, raw_key: str) -> tuple[int, int]:
        """The key's (requests, window_seconds); (0, 0) if none is set."""
        data = self.store.hgetall(_RATE_PREFIX + hash_key(raw_key))
        if not data:
            return 0, 0
        fields = {_text(k): v for k, v in data.items()}
        return _leading_int(fields.get("requests", "")), _leading_int(fields.get("window", ""))

    def get_key_hash(self, raw_key: str) -> str:
        """The stored hash of a raw key."""
        return hash_key(raw_key)