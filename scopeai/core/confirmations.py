"""In-process store for tool calls waiting on a human decision."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

from scopeai.errors import (
    ConfirmationAlreadyResolvedError,
    ConfirmationExpiredError,
    ConfirmationNotFoundError,
)
from scopeai.models import PendingConfirmation
from scopeai.utils.logging import get_logger

log = get_logger(__name__)


class ConfirmationStore:
    """Holds pending confirmations until they are claimed or expire.

    ``claim`` is serialized by a lock so concurrent resolves of one id see
    exactly one winner. Resolved ids are remembered so a repeat resolve is
    reported as already resolved rather than unknown until their TTL runs
    out; ``purge_expired`` forgets them after that and ``clear`` resets both.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.time) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._pending: dict[str, PendingConfirmation] = {}
        # resolved id -> original expiry, kept until then so repeats read as resolved
        self._resolved: dict[str, float] = {}
        self._lock = asyncio.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def now(self) -> float:
        return self._clock()

    def create(
        self,
        tool_name: str,
        args: dict[str, Any],
        summary: str,
        user_id: str,
        warnings: list[str] | None = None,
        company_id: str = "",
        tool_call_id: str | None = None,
    ) -> PendingConfirmation:
        confirmation = PendingConfirmation(
            tool_name=tool_name,
            args=args,
            summary=summary,
            user_id=user_id,
            created_at=self.now(),
            ttl=self._ttl,
            warnings=list(warnings or []),
            company_id=company_id,
            tool_call_id=tool_call_id,
        )
        return self.add(confirmation)

    def add(self, confirmation: PendingConfirmation) -> PendingConfirmation:
        self._pending[confirmation.confirmation_id] = confirmation
        log.debug("confirmation_added", id=confirmation.confirmation_id, tool=confirmation.tool_name)
        return confirmation

    def get(self, confirmation_id: str) -> PendingConfirmation | None:
        return self._pending.get(confirmation_id)

    def pending(self, user_id: str | None = None) -> list[PendingConfirmation]:
        now = self.now()
        return [
            c for c in self._pending.values()
            if not c.is_expired(now) and (user_id is None or c.user_id == user_id)
        ]

    async def claim(
        self,
        confirmation_id: str,
        user_id: str | None = None,
        company_id: str | None = None,
    ) -> PendingConfirmation:
        """Remove and return an entry. At most one caller ever claims a given id.

        When ``user_id``/``company_id`` are given they must match the owner;
        a mismatch is reported as not found and leaves the entry in place.
        """
        async with self._lock:
            if confirmation_id in self._resolved:
                raise ConfirmationAlreadyResolvedError(confirmation_id)
            confirmation = self._pending.get(confirmation_id)
            if confirmation is None:
                raise ConfirmationNotFoundError(confirmation_id)
            if (user_id is not None and user_id != confirmation.user_id) or (
                company_id is not None and company_id != confirmation.company_id
            ):
                log.warning("confirmation_owner_mismatch", id=confirmation_id, user_id=user_id)
                raise ConfirmationNotFoundError(confirmation_id)
            del self._pending[confirmation_id]
            self._resolved[confirmation_id] = confirmation.expires_at
            if confirmation.is_expired(self.now()):
                log.info("confirmation_expired", id=confirmation_id, tool=confirmation.tool_name)
                raise ConfirmationExpiredError(confirmation_id, confirmation)
            return confirmation

    def purge_expired(self) -> list[PendingConfirmation]:
        """Drop expired entries and forget resolved ids whose TTL has passed."""
        now = self.now()
        expired = [c for c in self._pending.values() if c.is_expired(now)]
        for c in expired:
            del self._pending[c.confirmation_id]
        stale = [cid for cid, expires_at in self._resolved.items() if now >= expires_at]
        for cid in stale:
            del self._resolved[cid]
        if expired or stale:
            log.info("confirmations_purged", count=len(expired), forgotten=len(stale))
        return expired

    def clear(self) -> None:
        self._pending.clear()
        self._resolved.clear()

    def __len__(self) -> int:
        return len(self._pending)
