from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from .clock import Clock, SystemClock
from .db import db
from .models import KeyValueRecord


def _dumps(value: Dict[str, Any]) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _glob_to_like(pattern: str) -> str:
    out = []
    for ch in pattern:
        if ch in ("%", "_", "\\"):
            out.append("\\" + ch)
        elif ch == "*":
            out.append("%")
        elif ch == "?":
            out.append("_")
        else:
            out.append(ch)
    return "".join(out)


class TTLStore:
    """
    Key-value store with per-key expiry on top of a single SQL table.

    Expired rows are invisible to every read and are physically removed
    either lazily (when the key is written again) or by purge_expired().
    All timestamps come from the injected clock.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()

    # ---------------------------
    # Helpers
    # ---------------------------
    def _expiry(self, ex: Optional[int]) -> Optional[int]:
        if ex is None:
            return None
        return self.clock.now_ms() + int(ex) * 1000

    def _live(self, now: int):
        return or_(KeyValueRecord.expires_at.is_(None), KeyValueRecord.expires_at > now)

    def _live_row(self, key: str) -> Optional[KeyValueRecord]:
        now = self.clock.now_ms()
        return KeyValueRecord.query.filter(KeyValueRecord.key == key, self._live(now)).first()

    def _upsert(self, key: str, text: str, expires_at: Optional[int]) -> None:
        row = KeyValueRecord.query.filter_by(key=key).first()
        if row is None:
            db.session.add(KeyValueRecord(key=key, value=text, expires_at=expires_at))
        else:
            row.value = text
            row.expires_at = expires_at

    # ---------------------------
    # Basic primitives
    # ---------------------------
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        row = self._live_row(key)
        if row is None:
            return None
        return json.loads(row.value)

    def set(self, key: str, value: Dict[str, Any], ex: Optional[int] = None) -> None:
        try:
            self._upsert(key, _dumps(value), self._expiry(ex))
            db.session.commit()
        except IntegrityError:
            # lost an insert race; the row exists now, overwrite it
            db.session.rollback()
            self._upsert(key, _dumps(value), self._expiry(ex))
            db.session.commit()

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        removed = KeyValueRecord.query.filter(KeyValueRecord.key.in_(keys)).delete(synchronize_session="fetch")
        db.session.commit()
        return removed

    def ttl(self, key: str) -> int:
        """
        Seconds until expiry: -1 for a permanent key, -2 for a missing one.
        """
        row = self._live_row(key)
        if row is None:
            return -2
        if row.expires_at is None:
            return -1
        return (row.expires_at - self.clock.now_ms() + 500) // 1000

    def scan(self, cursor: int = 0, match: str = "*", count: int = 200) -> Tuple[int, List[str]]:
        """
        Cursor iteration over live keys matching a glob pattern.
        Returns (next_cursor, keys); next_cursor is 0 once iteration is complete.
        """
        now = self.clock.now_ms()
        rows = (
            KeyValueRecord.query
            .filter(
                KeyValueRecord.id > int(cursor),
                KeyValueRecord.key.like(_glob_to_like(match), escape="\\"),
                self._live(now),
            )
            .order_by(KeyValueRecord.id)
            .limit(count)
            .all()
        )
        keys = [r.key for r in rows]
        if len(rows) < count:
            return 0, keys
        return rows[-1].id, keys

    # ---------------------------
    # Atomic conditional writes
    # ---------------------------
    def set_if_absent(self, key: str, value: Dict[str, Any], ex: Optional[int] = None) -> bool:
        """
        Create the key only if no live value exists. Uniqueness of the key
        column decides the winner between concurrent writers.
        """
        now = self.clock.now_ms()
        KeyValueRecord.query.filter(
            KeyValueRecord.key == key,
            KeyValueRecord.expires_at.isnot(None),
            KeyValueRecord.expires_at <= now,
        ).delete(synchronize_session="fetch")
        db.session.add(KeyValueRecord(key=key, value=_dumps(value), expires_at=self._expiry(ex)))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return False
        return True

    def compare_and_move(
        self,
        src: str,
        expected: Dict[str, Any],
        dst: str,
        value: Dict[str, Any],
        ex: Optional[int] = None,
    ) -> bool:
        """
        Delete `src` only if its live value still equals `expected`, and in
        the same transaction write `value` to `dst`.
        """
        now = self.clock.now_ms()
        removed = KeyValueRecord.query.filter(
            and_(KeyValueRecord.key == src, KeyValueRecord.value == _dumps(expected), self._live(now))
        ).delete(synchronize_session="fetch")
        if removed != 1:
            db.session.rollback()
            return False

        try:
            self._upsert(dst, _dumps(value), self._expiry(ex))
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return False
        return True

    def purge_expired(self) -> int:
        now = self.clock.now_ms()
        removed = KeyValueRecord.query.filter(
            KeyValueRecord.expires_at.isnot(None),
            KeyValueRecord.expires_at <= now,
        ).delete(synchronize_session="fetch")
        db.session.commit()
        return removed
