from __future__ import annotations

import logging
from typing import Optional

from .auth import generate_key, keys_match, mask
from .clock import Clock
from .config import ACTIVE_TTL, PENDING_TTL
from .delivery import DeliveryChannel
from .errors import ErrorCode, Mode, Outcome
from .records import ActiveLease, BlacklistEntry, KickSignal, PendingGrant
from .store import TTLStore

logger = logging.getLogger(__name__)

NOTE_TEMPLATE = """HWID KEY (expires in 30 minutes if not redeemed)
KEY: {key}

Paste the key into the script to activate."""


class ActivationService:
    """
    Per-HWID lifecycle: NONE -> PENDING -> ACTIVE -> (expiry) NONE,
    with BLACKLISTED overriding every other state.

    All state lives in the TTL store; the service itself holds none.
    The two check-then-write steps use the store's conditional writes:
    pending creation is create-if-absent and promotion is compare-and-move.
    """

    def __init__(self, store: TTLStore, delivery: DeliveryChannel, clock: Optional[Clock] = None):
        self.store = store
        self.delivery = delivery
        self.clock = clock or store.clock

    # ---------------------------
    # Record access
    # ---------------------------
    def blacklist_entry(self, hwid: str) -> Optional[BlacklistEntry]:
        return BlacklistEntry.decode(self.store.get(BlacklistEntry.storage_key(hwid)))

    def active_lease(self, hwid: str) -> Optional[ActiveLease]:
        return ActiveLease.decode(self.store.get(ActiveLease.storage_key(hwid)))

    def pending_grant(self, hwid: str) -> Optional[PendingGrant]:
        return PendingGrant.decode(self.store.get(PendingGrant.storage_key(hwid)))

    def kick_signal(self, hwid: str) -> Optional[KickSignal]:
        return KickSignal.decode(self.store.get(KickSignal.storage_key(hwid)))

    def _blacklisted(self, hwid: str) -> Optional[Outcome]:
        entry = self.blacklist_entry(hwid)
        if entry is None:
            return None
        return Outcome.failure(ErrorCode.BLACKLISTED, info=entry.to_dict())

    def _revoked_after_write(self, hwid: str, written_key: str) -> Optional[Outcome]:
        """
        Drop the record just written if the HWID was blacklisted meanwhile.
        The blacklist entry is stored before its cleanup deletes, so either
        this re-read or that cleanup removes the record.
        """
        blocked = self._blacklisted(hwid)
        if blocked:
            self.store.delete(written_key)
            logger.info("Blacklisted during write, dropped %s", written_key)
        return blocked

    def _pending_exists(self, hwid: str, grant: PendingGrant) -> Outcome:
        return Outcome.success(
            mode=Mode.PENDING_EXISTS.value,
            getKeyLink=grant.delivery_url,
            pendingSecondsLeft=max(0, self.store.ttl(PendingGrant.storage_key(hwid))),
        )

    # ---------------------------
    # Operations
    # ---------------------------
    def get_key(self, hwid: str) -> Outcome:
        blocked = self._blacklisted(hwid)
        if blocked:
            return blocked

        now = self.clock.now_ms()
        lease = self.active_lease(hwid)
        if lease is not None and lease.seconds_left(now) > 0:
            return Outcome.success(
                mode=Mode.ACTIVE.value,
                secondsLeft=lease.seconds_left(now),
                expiresAt=lease.expires_at,
            )

        pending_key = PendingGrant.storage_key(hwid)
        raw = self.store.get(pending_key)
        grant = PendingGrant.decode(raw)
        if grant is not None:
            return self._pending_exists(hwid, grant)
        if raw is not None:
            # Undecodable grant: clear it so a fresh one can be stored
            self.store.delete(pending_key)

        key = generate_key()
        publication = self.delivery.publish(
            title=f"HWID KEY - {hwid[:10]}",
            body=NOTE_TEMPLATE.format(key=key),
        )
        grant = PendingGrant(
            key=key,
            created_at=self.clock.now_ms(),
            paste_id=publication.id,
            paste_url=publication.url,
            delivery_url=self.delivery.shorten(publication.url),
        )

        if not self.store.set_if_absent(pending_key, grant.to_dict(), ex=PENDING_TTL):
            # A concurrent request stored its grant first; hand out that one
            winner = self.pending_grant(hwid)
            if winner is not None:
                logger.info("Pending grant race for %s, returning existing grant", hwid)
                return self._pending_exists(hwid, winner)
            raise RuntimeError(f"Pending grant for {hwid} could not be stored")

        revoked = self._revoked_after_write(hwid, pending_key)
        if revoked:
            return revoked

        logger.info("Pending grant created for %s (key %s)", hwid, mask(key))
        return Outcome.success(
            mode=Mode.PENDING_CREATED.value,
            getKeyLink=grant.delivery_url,
            expiresIn=PENDING_TTL,
        )

    def redeem(self, hwid: str, key: str) -> Outcome:
        blocked = self._blacklisted(hwid)
        if blocked:
            return blocked

        already = self._already_active(hwid)
        if already:
            return already

        grant = self.pending_grant(hwid)
        if grant is None:
            return Outcome.failure(ErrorCode.NO_PENDING_KEY)
        if not keys_match(key, grant.key):
            logger.info("Invalid key presented for %s", hwid)
            return Outcome.failure(ErrorCode.INVALID_KEY)

        activated_at = self.clock.now_ms()
        lease = ActiveLease(key=key, activated_at=activated_at, expires_at=activated_at + ACTIVE_TTL * 1000)
        moved = self.store.compare_and_move(
            PendingGrant.storage_key(hwid),
            grant.to_dict(),
            ActiveLease.storage_key(hwid),
            lease.to_dict(),
            ex=ACTIVE_TTL,
        )
        if not moved:
            # Someone else consumed this grant between our read and write
            return (
                self._blacklisted(hwid)
                or self._already_active(hwid)
                or Outcome.failure(ErrorCode.NO_PENDING_KEY)
            )

        revoked = self._revoked_after_write(hwid, ActiveLease.storage_key(hwid))
        if revoked:
            return revoked

        logger.info("Activated %s until %s", hwid, lease.expires_at)
        return Outcome.success(mode=Mode.ACTIVATED.value, expiresAt=lease.expires_at, secondsLeft=ACTIVE_TTL)

    def _already_active(self, hwid: str) -> Optional[Outcome]:
        now = self.clock.now_ms()
        lease = self.active_lease(hwid)
        if lease is None or lease.seconds_left(now) <= 0:
            return None
        return Outcome.success(
            mode=Mode.ALREADY_ACTIVE.value,
            secondsLeft=lease.seconds_left(now),
            expiresAt=lease.expires_at,
        )

    def status(self, hwid: str) -> Outcome:
        blocked = self._blacklisted(hwid)
        if blocked:
            return blocked
        return Outcome.success(**self._validity(hwid))

    def poll(self, hwid: str) -> Outcome:
        """
        Heartbeat: validity plus any pending kick signal. Kick signals are
        not consumed here; they expire on their own.
        """
        blocked = self._blacklisted(hwid)
        if blocked:
            return blocked

        kick = self.kick_signal(hwid)
        return Outcome.success(**self._validity(hwid), kick=kick.to_dict() if kick else None)

    def _validity(self, hwid: str) -> dict:
        lease = self.active_lease(hwid)
        if lease is None:
            return {"valid": False, "secondsLeft": 0, "expiresAt": None}

        left = lease.seconds_left(self.clock.now_ms())
        return {"valid": left > 0, "secondsLeft": left, "expiresAt": lease.expires_at}
