from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .clock import Clock
from .config import KICK_TTL
from .errors import Outcome
from .records import ActiveLease, BlacklistEntry, KickSignal, PendingGrant
from .store import TTLStore

logger = logging.getLogger(__name__)

DEFAULT_BLACKLIST_REASON = "blacklisted"
DEFAULT_KICK_REASON = "kicked by admin"
SCAN_COUNT = 200


class AdminControlPlane:
    def __init__(self, store: TTLStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or store.clock

    def list_actives(self) -> Outcome:
        """
        Every live lease, longest remaining first. The whole set is returned.
        """
        prefix = ActiveLease.namespace + ":"
        items: List[Dict[str, Any]] = []

        cursor = 0
        while True:
            cursor, keys = self.store.scan(cursor, match=prefix + "*", count=SCAN_COUNT)
            for k in keys:
                lease = ActiveLease.decode(self.store.get(k))
                if lease is None:
                    continue
                left = lease.seconds_left(self.clock.now_ms())
                if left <= 0:
                    continue
                items.append({
                    "hwid": k[len(prefix):],
                    "secondsLeft": left,
                    "expiresAt": lease.expires_at,
                    "activatedAt": lease.activated_at,
                })
            if cursor == 0:
                break

        items.sort(key=lambda item: item["secondsLeft"], reverse=True)
        return Outcome.success(count=len(items), items=items)

    def blacklist(self, hwid: str, reason: str = "") -> Outcome:
        reason = reason or DEFAULT_BLACKLIST_REASON
        now = self.clock.now_ms()

        self.store.set(BlacklistEntry.storage_key(hwid), BlacklistEntry(reason=reason, at=now).to_dict())
        self.store.delete(PendingGrant.storage_key(hwid), ActiveLease.storage_key(hwid))
        self.store.set(KickSignal.storage_key(hwid), KickSignal(reason=reason, at=now).to_dict(), ex=KICK_TTL)

        logger.info("Blacklisted %s: %s", hwid, reason)
        return Outcome.success()

    def unblacklist(self, hwid: str) -> Outcome:
        # Earlier pending/active state was dropped at blacklist time and stays gone
        self.store.delete(BlacklistEntry.storage_key(hwid))
        logger.info("Unblacklisted %s", hwid)
        return Outcome.success()

    def kick(self, hwid: str, reason: str = "") -> Outcome:
        reason = reason or DEFAULT_KICK_REASON
        self.store.set(
            KickSignal.storage_key(hwid),
            KickSignal(reason=reason, at=self.clock.now_ms()).to_dict(),
            ex=KICK_TTL,
        )
        logger.info("Kick issued for %s: %s", hwid, reason)
        return Outcome.success()
