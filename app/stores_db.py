"""Postgres-backed key-value store."""

from __future__ import annotations

import json
import logging
from typing import Any, List

from app.db import execute, fetch_all, fetch_one, get_conn

logger = logging.getLogger("crm.kv")


def _json_dumps(value: object) -> str:
    return json.dumps(value, default=str)


def _ensure_json(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        return json.loads(value)
    return value


def _like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"


class DbKvStore:
    """Same contract as the in-memory store, one row per key in ``crm_kv``."""

    def __init__(self, table: str = "crm_kv") -> None:
        self.table = table

    def ensure_schema(self) -> None:
        with get_conn() as conn:
            execute(
                conn,
                f"""
                create table if not exists {self.table} (
                    key text primary key,
                    value jsonb not null,
                    updated_at timestamptz not null default now()
                )
                """,
                query_name="crm_kv.ensure_schema",
            )
        logger.info("kv_schema_ready table=%s", self.table)

    def get(self, key: str) -> Any | None:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"select value from {self.table} where key=%s",
                [key],
                query_name="crm_kv.get",
            )
        if not row:
            return None
        return _ensure_json(row.get("value"))

    def put(self, key: str, value: Any) -> None:
        if not isinstance(key, str) or not key:
            raise ValueError("key must be non-empty string")
        with get_conn() as conn:
            execute(
                conn,
                f"""
                insert into {self.table} (key, value, updated_at)
                values (%s, %s::jsonb, now())
                on conflict (key) do update set value=excluded.value, updated_at=excluded.updated_at
                """,
                [key, _json_dumps(value)],
                query_name="crm_kv.put",
            )

    def delete(self, key: str) -> bool:
        with get_conn() as conn:
            count = execute(
                conn,
                f"delete from {self.table} where key=%s",
                [key],
                query_name="crm_kv.delete",
            )
        return count > 0

    def list(self, prefix: str = "") -> List[str]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                f"select key from {self.table} where key like %s escape '\\' order by key",
                [_like_prefix(prefix)],
                query_name="crm_kv.list",
            )
        return [r.get("key") for r in rows]
