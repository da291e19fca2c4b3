# Overview: Result value returned by checks whose failures the cashier must see.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Outcome:
    """
    Success or failure of a check, with a stable machine code.

    Used instead of exceptions where failing is an ordinary answer
    (cart admission control, discount validation). Nothing is mutated
    when ok is False.
    """
    ok: bool
    code: str = "ok"
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, message: str = "", **details: Any) -> "Outcome":
        return cls(ok=True, code="ok", message=message, details=details)

    @classmethod
    def failure(cls, code: str, message: str, **details: Any) -> "Outcome":
        return cls(ok=False, code=code, message=message, details=details)

    def __bool__(self) -> bool:
        return self.ok

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }
