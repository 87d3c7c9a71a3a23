from __future__ import annotations

import asyncio
import inspect
import os
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any

import aiobotocore.session
from aiobotocore.client import AioBaseClient
from aiobotocore.config import AioConfig
from botocore.config import Config


def is_lambda_environment(environ: Mapping[str, str] = os.environ) -> bool:
    return bool(
        environ.get("AWS_LAMBDA_FUNCTION_NAME") or "AWS_Lambda" in (environ.get("AWS_EXECUTION_ENV") or "")
    )


def create_boto3_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_pool_connections: int | None = None,
    config_cls: type[Config] = Config,
    environ: Mapping[str, str] = os.environ,
) -> Config:
    """Client config with botocore retries disabled; BulkOperationExecutor owns retrying.

    A Lambda instance serves one request at a time, so its default pool is smaller.
    """
    if max_pool_connections is None:
        max_pool_connections = 10 if is_lambda_environment(environ) else 50
    return config_cls(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        max_pool_connections=max_pool_connections,
        retries={"max_attempts": 1, "mode": "standard"},
    )


@asynccontextmanager
async def get_async_dynamodb_client(
    *,
    region: str | None = None,
    endpoint_url: str | None = None,
    config: Config | None = None,
    session: Any | None = None,
    **client_kwargs: Any,
) -> AsyncIterator[Any]:
    sess = session or aiobotocore.session.get_session()
    async with sess.create_client(
        "dynamodb",
        region_name=region,
        endpoint_url=endpoint_url,
        config=config or create_boto3_config(config_cls=AioConfig),
        **client_kwargs,
    ) as client:
        yield client


class AsyncClient:
    """Awaitable view over a caller-supplied client that is not an aiobotocore client.

    Coroutine methods are awaited directly; plain boto3 methods run on a worker
    thread so the event loop never blocks.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @property
    def wrapped(self) -> Any:
        return self._client

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._client, name)
        if name.startswith("_") or not callable(attr):
            return attr

        async def call(**kwargs: Any) -> Any:
            if inspect.iscoroutinefunction(attr):
                return await attr(**kwargs)
            return await asyncio.to_thread(attr, **kwargs)

        return call


def as_async_client(client: Any) -> Any:
    if isinstance(client, (AsyncClient, AioBaseClient)):
        return client
    return AsyncClient(client)
