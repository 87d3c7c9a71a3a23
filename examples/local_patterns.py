from __future__ import annotations

import asyncio
import os
import uuid
from typing import Any

import boto3

from ddb_patterns import (
    AccessPattern,
    KeyCondition,
    SortKeyCondition,
    TableFacade,
    entity_key,
    index_shape,
)


def _client() -> Any:
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


async def run(table_name: str) -> None:
    async with TableFacade(
        table_name,
        region=os.environ.get("AWS_REGION", "us-east-1"),
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        indexes=[index_shape("gsi-status", partition="status", sort=[("createdAt", "number")])],
        patterns={
            "userOrders": AccessPattern(
                key_condition=lambda p: KeyCondition(entity_key("USER", p["userId"]), SortKeyCondition.begins_with("ORDER#")),
            ),
            "openOrders": AccessPattern(
                key_condition=lambda p: KeyCondition("open"),
                index="gsi-status",
            ),
        },
    ) as table:
        orders = [
            {"pk": entity_key("USER", "1"), "sk": f"ORDER#{i:03d}", "status": "open" if i % 3 else "closed", "createdAt": i}
            for i in range(30)
        ]
        await table.batch_write(puts=orders)

        for _ in range(20):
            await table.get({"pk": entity_key("USER", "1"), "sk": "ORDER#000"})

        page = await table.execute_pattern("userOrders", {"userId": "1"}, limit=5)
        print("first orders:", [o["sk"] for o in page.items])

        open_orders = await table.execute_pattern("openOrders")
        print("open orders:", len(open_orders.items))

    print("stats:", table.get_stats())
    for rec in table.get_recommendations():
        print(f"[{rec.severity}] {rec.message}: {rec.details}")


def main() -> None:
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "dummy")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "dummy")
    client = _client()
    table_name = f"ddb_patterns_example_{uuid.uuid4().hex[:12]}"

    client.create_table(
        TableName=table_name,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}, {"AttributeName": "sk", "KeyType": "RANGE"}],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
            {"AttributeName": "status", "AttributeType": "S"},
            {"AttributeName": "createdAt", "AttributeType": "N"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "gsi-status",
                "KeySchema": [
                    {"AttributeName": "status", "KeyType": "HASH"},
                    {"AttributeName": "createdAt", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=table_name)

    try:
        asyncio.run(run(table_name))
    finally:
        client.delete_table(TableName=table_name)


if __name__ == "__main__":
    main()
