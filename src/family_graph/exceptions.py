"""Typed errors raised by the family graph engine.

Each error carries an :class:`ErrorCode` so a transport layer can map it to
its own status codes without inspecting messages.
"""
from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Error kinds detected by the engine."""
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    GENDER_MISMATCH = "GENDER_MISMATCH"
    INVALID_RELATION = "INVALID_RELATION"
    CIRCULAR_RELATION = "CIRCULAR_RELATION"
    HAS_CHILDREN = "HAS_CHILDREN"
    IN_FAMILY = "IN_FAMILY"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    CANCELLED = "CANCELLED"


class FamilyGraphError(Exception):
    """Base error for all engine failures."""

    code: ErrorCode = ErrorCode.INVALID_INPUT

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.code.value}: {self.message} ({self.details})"
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict[str, str | None]:
        return {"code": self.code.value, "message": self.message, "details": self.details}


class InvalidInput(FamilyGraphError):
    code = ErrorCode.INVALID_INPUT


class NotFound(FamilyGraphError):
    code = ErrorCode.NOT_FOUND


class GenderMismatch(FamilyGraphError):
    code = ErrorCode.GENDER_MISMATCH


class InvalidRelation(FamilyGraphError):
    code = ErrorCode.INVALID_RELATION


class CircularRelation(FamilyGraphError):
    code = ErrorCode.CIRCULAR_RELATION


class HasChildren(FamilyGraphError):
    code = ErrorCode.HAS_CHILDREN


class InFamily(FamilyGraphError):
    code = ErrorCode.IN_FAMILY


class AlreadyExists(FamilyGraphError):
    code = ErrorCode.ALREADY_EXISTS


class OperationCancelled(FamilyGraphError):
    code = ErrorCode.CANCELLED
