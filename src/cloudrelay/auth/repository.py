"""
Thread-safe in-memory token repository.

Implements the TokenRepository protocol for single-process deployments and
tests. Records are copied on load and save, so callers never share a
mutable instance with the store and a save replaces all fields at once.
"""

import logging
import threading
from dataclasses import replace
from typing import Dict, Optional

from cloudrelay.auth.models import TokenRecord

logger = logging.getLogger(__name__)


class InMemoryTokenRepository:
    """Token records keyed by record_id."""

    def __init__(self, records: Optional[list[TokenRecord]] = None) -> None:
        self._records: Dict[str, TokenRecord] = {}
        self._lock = threading.Lock()
        for record in records or []:
            self._records[record.record_id] = replace(record)

    def load(self, record_id: str) -> Optional[TokenRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return replace(record) if record is not None else None

    def save(self, record: TokenRecord) -> None:
        with self._lock:
            self._records[record.record_id] = replace(record)
        logger.debug(
            "Token record saved",
            extra={"user_id": record.user_id, "provider": record.provider},
        )

    def find_for_user(self, user_id: str, provider: str) -> Optional[TokenRecord]:
        with self._lock:
            for record in self._records.values():
                if record.user_id == str(user_id) and record.provider == provider:
                    return replace(record)
        return None


def token_record_id(user_id: str, provider: str) -> str:
    """Conventional record id for a (user, provider) connection."""
    return f"{user_id}:{provider}"


__all__ = ["InMemoryTokenRepository", "token_record_id"]
