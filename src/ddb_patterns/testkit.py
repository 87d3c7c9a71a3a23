from __future__ import annotations

from collections.abc import Callable
from typing import Any

from botocore.exceptions import ClientError

from .mocks import ANY, AsyncFakeDynamoDBClient, FakeDynamoDBClient


def fixed_random(value: float) -> Callable[[], float]:
    if not 0.0 <= value < 1.0:
        raise ValueError("value must be in [0, 1)")

    def rand() -> float:
        return value

    return rand


async def no_sleep(_: float) -> None:
    return None


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def client_error(
    code: str,
    message: str = "",
    *,
    operation: str = "Op",
    status: int = 400,
    **extra: Any,
) -> ClientError:
    response: dict[str, Any] = {
        "Error": {"Code": code, "Message": message},
        "ResponseMetadata": {"HTTPStatusCode": status},
    }
    response.update(extra)
    return ClientError(response, operation)  # type: ignore[arg-type]


__all__ = [
    "ANY",
    "AsyncFakeDynamoDBClient",
    "FakeClock",
    "FakeDynamoDBClient",
    "RecordingSleep",
    "client_error",
    "fixed_random",
    "no_sleep",
]
