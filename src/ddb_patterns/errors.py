from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


class DdbPatternsError(Exception):
    pass


class ValidationError(DdbPatternsError):
    def __init__(self, message: str, *, position: int | None = None) -> None:
        super().__init__(message)
        self.position = position


class DuplicatePatternError(ValidationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"access pattern already registered: {name}")
        self.name = name


class PatternNotFoundError(ValidationError):
    def __init__(self, name: str, available: Sequence[str]) -> None:
        listed = ", ".join(available) if available else "<none>"
        super().__init__(f"access pattern not found: {name} (available: {listed})")
        self.name = name
        self.available = tuple(available)


class KeyShapeMismatchError(ValidationError):
    def __init__(
        self,
        *,
        pattern: str,
        key_role: str,
        expected: tuple[str, ...],
        actual: tuple[str, ...],
        index_name: str | None = None,
    ) -> None:
        where = f" on index {index_name}" if index_name else ""
        super().__init__(
            f"{pattern}: {key_role} key shape mismatch{where}: "
            f"expected [{', '.join(expected)}], got [{', '.join(actual)}]"
        )
        self.pattern = pattern
        self.key_role = key_role
        self.expected = expected
        self.actual = actual
        self.index_name = index_name


class ConditionFailedError(DdbPatternsError):
    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        key: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{operation}: {message}" if operation else message)
        self.operation = operation
        self.key = dict(key) if key is not None else None


class NotFoundError(DdbPatternsError):
    pass


class RetryableError(DdbPatternsError):
    def __init__(self, *, code: str, message: str, operation: str | None = None, attempts: int = 0) -> None:
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}{code}: {message}")
        self.code = code
        self.message = message
        self.operation = operation
        self.attempts = attempts


class TransactionCanceledError(DdbPatternsError):
    def __init__(
        self,
        *,
        message: str,
        reason_codes: tuple[str, ...],
        reasons: tuple[Mapping[str, Any], ...] = (),
    ) -> None:
        super().__init__(message)
        self.reason_codes = reason_codes
        self.reasons = reasons

    def failed_indexes(self) -> tuple[int, ...]:
        return tuple(i for i, code in enumerate(self.reason_codes) if code not in {"", "None"})


class AwsError(DdbPatternsError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
