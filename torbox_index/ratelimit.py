"""Admission control in front of the upstream API.

Three fixed-window checks guard every request:

* per client IP,
* per client IP and access key,
* key churn: how many distinct access keys one IP used in the window.

The churn check stops an IP from rotating through many keys to stay under
the per-key limit. Windows reset wholesale at ``reset_at``, so up to twice the
nominal rate can pass across a window boundary.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from torbox_index.logging_config import mask_key
from torbox_index.stores import MISSING, ExpiringStore, MemoryStore

logger = logging.getLogger(__name__)

LOCAL_IPS = frozenset({"::1", "127.0.0.1", "0.0.0.0"})
UNKNOWN_BUCKET = "unknown"


class Admission(str, Enum):
    ALLOWED = "allowed"
    LIMITED = "limited"


def _increment(current):
    return 1 if current is MISSING else current + 1


class RateLimiter:
    def __init__(
        self,
        *,
        window_seconds: float = 60.0,
        max_per_ip: int = 240,
        max_per_ip_key: int = 240,
        max_keys_per_ip: int = 3,
        ip_store: Optional[ExpiringStore] = None,
        ip_key_store: Optional[ExpiringStore] = None,
        churn_store: Optional[ExpiringStore] = None,
        soft_max: int = 10_000,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_per_ip = max_per_ip
        self.max_per_ip_key = max_per_ip_key
        self.max_keys_per_ip = max_keys_per_ip
        self.ip_store = ip_store if ip_store is not None else MemoryStore(soft_max, name="ratelimit.ip")
        self.ip_key_store = (
            ip_key_store if ip_key_store is not None else MemoryStore(soft_max, name="ratelimit.ip_key")
        )
        self.churn_store = (
            churn_store if churn_store is not None else MemoryStore(soft_max, name="ratelimit.churn")
        )

    @classmethod
    def from_settings(cls, settings) -> "RateLimiter":
        return cls(
            window_seconds=settings.rate_limit_window_seconds,
            max_per_ip=settings.rate_limit_per_ip,
            max_per_ip_key=settings.rate_limit_per_ip_key,
            max_keys_per_ip=settings.rate_limit_max_keys_per_ip,
            soft_max=settings.rate_limit_soft_max,
        )

    @staticmethod
    def bucket_for(client_ip: Optional[str]) -> str:
        if not client_ip or client_ip in LOCAL_IPS:
            return UNKNOWN_BUCKET
        return client_ip

    def admit(self, client_ip: Optional[str], access_key: str) -> Admission:
        ip_bucket = self.bucket_for(client_ip)

        # All checks run so every bucket records the request.
        checks = {
            "ip": self._consume(self.ip_store, ip_bucket, self.max_per_ip),
            "ip_key": self._consume(self.ip_key_store, f"{ip_bucket}|{access_key}", self.max_per_ip_key),
            "churn": self._consume_churn(ip_bucket, access_key),
        }
        tripped = [name for name, limited in checks.items() if limited]
        if tripped:
            logger.info(
                "Rate limited %s (key %s): %s",
                ip_bucket,
                mask_key(access_key),
                ", ".join(tripped),
            )
            return Admission.LIMITED
        return Admission.ALLOWED

    def _consume(self, store: ExpiringStore, bucket: str, limit: int) -> bool:
        count = store.update(bucket, _increment, self.window_seconds)
        return count > limit

    def _consume_churn(self, ip_bucket: str, access_key: str) -> bool:
        def add_key(current):
            if current is MISSING:
                return frozenset({access_key})
            return current | {access_key}

        keys = self.churn_store.update(ip_bucket, add_key, self.window_seconds)
        return len(keys) > self.max_keys_per_ip
