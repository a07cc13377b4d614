# @even rygh
"""
Mitigation controller: source blocking backed by the expiring store.

Blocks are TTL entries only. There is no durable block table, so a process
restart unblocks every source.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from counter_store import ExpiringStore
from models import BlockEntry

logger = logging.getLogger(__name__)

BLOCK_KEY_PREFIX = "blocked:"


def _block_key(source: str) -> str:
    return f"{BLOCK_KEY_PREFIX}{source}"


class MitigationController:
    """Consulted on every inbound request; also the sink for detector verdicts."""

    def __init__(self, store: ExpiringStore, default_duration_seconds: int = 600):
        self.store = store
        self.default_duration_seconds = default_duration_seconds

    def is_blocked(self, source: str) -> bool:
        return self.store.get(_block_key(source)) is not None

    def get_block(self, source: str) -> Optional[BlockEntry]:
        return self.store.get(_block_key(source))

    def block(self, source: str, reason: str, duration_seconds: Optional[int] = None) -> BlockEntry:
        """Create or overwrite the block entry for source."""
        duration = duration_seconds if duration_seconds is not None else self.default_duration_seconds
        now = self.store.now()
        entry = BlockEntry(
            source=source,
            reason=reason,
            blocked_at=datetime.fromtimestamp(now, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(now + duration, tz=timezone.utc),
        )
        self.store.set(_block_key(source), entry, duration)
        logger.warning(
            f"Source blocked: {source} | reason={reason} duration={duration}s "
            f"expires_at={entry.expires_at.isoformat()}"
        )
        return entry

    def unblock(self, source: str) -> bool:
        """Remove a block early. Returns False if source was not blocked."""
        removed = self.store.delete(_block_key(source))
        if removed:
            logger.info(f"Source unblocked: {source} | trigger=manual")
        return removed

    def list_blocked(self) -> List[BlockEntry]:
        entries = [value for _, value in self.store.items(BLOCK_KEY_PREFIX)]
        entries.sort(key=lambda e: e.blocked_at, reverse=True)
        return entries
