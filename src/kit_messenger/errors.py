"""Expected failure outcomes and the result values that carry them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class MessengerError(Exception):
    code = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_failure(self) -> "Failure":
        return Failure(code=self.code, message=self.message)


class DuplicateName(MessengerError):
    code = "duplicate_name"


class UserNotFound(MessengerError):
    code = "user_not_found"


class WrongPassword(MessengerError):
    code = "wrong_password"


class AccountLocked(MessengerError):
    code = "account_locked"

    def __init__(self, minutes: int) -> None:
        super().__init__(f"locked for {minutes} minute(s)")
        self.minutes = minutes

    def to_failure(self) -> "Failure":
        return Failure(code=self.code, message=self.message, minutes=self.minutes)


class Forbidden(MessengerError):
    code = "forbidden"


class InvalidTarget(MessengerError):
    code = "invalid_target"


class InvalidInput(MessengerError):
    code = "invalid_input"


@dataclass(frozen=True)
class Failure:
    code: str
    message: str = ""
    minutes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.minutes is not None:
            payload["minutes"] = self.minutes
        return payload


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def code(self) -> Optional[str]:
        return None if self.error is None else self.error.code

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, exc: MessengerError) -> "Result[T]":
        return cls(error=exc.to_failure())
