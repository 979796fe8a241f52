from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class ErrorCode(str, Enum):
    MISSING_HWID = "MISSING_HWID"
    MISSING_HWID_OR_KEY = "MISSING_HWID_OR_KEY"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_KEY = "INVALID_KEY"
    BLACKLISTED = "BLACKLISTED"
    NO_PENDING_KEY = "NO_PENDING_KEY"
    SERVER_ERROR = "SERVER_ERROR"


HTTP_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.MISSING_HWID: 400,
    ErrorCode.MISSING_HWID_OR_KEY: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.INVALID_KEY: 401,
    ErrorCode.BLACKLISTED: 403,
    ErrorCode.NO_PENDING_KEY: 404,
    ErrorCode.SERVER_ERROR: 500,
}


class Mode(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING_EXISTS = "PENDING_EXISTS"
    PENDING_CREATED = "PENDING_CREATED"
    ALREADY_ACTIVE = "ALREADY_ACTIVE"
    ACTIVATED = "ACTIVATED"


class DeliveryError(RuntimeError):
    """Publishing or shortening through the delivery channel failed."""


@dataclass
class Outcome:
    """
    Result of one state-machine or admin operation.
    `payload` is exactly the JSON body returned to the caller.
    """
    payload: Dict[str, Any] = field(default_factory=dict)
    status: int = 200

    @property
    def ok(self) -> bool:
        return bool(self.payload.get("ok"))

    @property
    def error(self):
        return self.payload.get("error")

    @property
    def mode(self):
        return self.payload.get("mode")

    @classmethod
    def success(cls, **fields: Any) -> "Outcome":
        return cls(payload={"ok": True, **fields})

    @classmethod
    def failure(cls, code: ErrorCode, **extra: Any) -> "Outcome":
        return cls(payload={"ok": False, "error": code.value, **extra}, status=HTTP_STATUS[code])
