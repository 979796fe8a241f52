from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Dict, Optional, Tuple, Type, TypeVar

from .clock import seconds_left

logger = logging.getLogger(__name__)

R = TypeVar("R", bound="Record")


@dataclass
class Record:
    """
    Base for every stored value. Each subclass owns one key namespace and a
    fixed schema; values read back from the store go through decode().
    """
    namespace: ClassVar[str] = ""
    # fields that may be stored empty
    optional: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def storage_key(cls, hwid: str) -> str:
        return f"{cls.namespace}:{hwid}"

    @classmethod
    def decode(cls: Type[R], raw: Optional[Dict[str, Any]]) -> Optional[R]:
        if raw is None:
            return None
        if not isinstance(raw, dict):
            logger.warning("Ignoring non-object %s record", cls.namespace)
            return None

        values = {}
        for f in fields(cls):
            if f.name in cls.optional:
                values[f.name] = raw.get(f.name) or ""
                continue
            if raw.get(f.name) in (None, ""):
                logger.warning("Ignoring %s record without %r", cls.namespace, f.name)
                return None
            values[f.name] = raw[f.name]
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PendingGrant(Record):
    namespace: ClassVar[str] = "pending"
    optional: ClassVar[Tuple[str, ...]] = ("paste_id",)

    key: str
    created_at: int
    paste_id: str
    paste_url: str
    delivery_url: str


@dataclass
class ActiveLease(Record):
    namespace: ClassVar[str] = "active"

    key: str
    activated_at: int
    expires_at: int

    def seconds_left(self, now_ms: int) -> int:
        return seconds_left(self.expires_at, now_ms)


@dataclass
class BlacklistEntry(Record):
    namespace: ClassVar[str] = "blacklist"

    reason: str
    at: int


@dataclass
class KickSignal(Record):
    namespace: ClassVar[str] = "kick"

    reason: str
    at: int
