# trainhub/services/remote/http_store.py
"""
Remote store over a PostgREST-style HTTP API.

Filters map to query parameters:
    eq       → field=eq.value
    is_null  → field=is.null
    in       → field=in.(a,b,c)

Conditional updates are PATCH requests whose query carries the expected
predicates; PostgREST applies the WHERE clause and the write in one
statement, and an empty representation means nothing matched.

A claim is one PATCH over `id=in.(...)` plus the expected predicates.
PostgREST commits each request on its own, so when fewer rows come back
than were asked for, a second PATCH restores the claimed rows to the
values the predicates pinned (only rows still carrying the new values
are touched).
"""

import logging
from typing import Optional, Sequence

import httpx

from ...exceptions import RemoteRejectedError, RemoteUnavailableError
from .base import Filter, RemoteStore, eq, in_
from .changes import ChangeFeed

logger = logging.getLogger(__name__)


class HttpRemoteStore(RemoteStore):
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        feed: Optional[ChangeFeed] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"

        self.feed = feed
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @staticmethod
    def _params(filters: Sequence[Filter]) -> list[tuple[str, str]]:
        params = []
        for f in filters:
            if f.op == "eq":
                params.append((f.field, f"eq.{f.value}"))
            elif f.op == "is_null":
                params.append((f.field, "is.null"))
            elif f.op == "in":
                params.append((f.field, f"in.({','.join(str(v) for v in f.value)})"))
            else:
                raise ValueError(f"Unknown filter op: {f.op}")
        return params

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteUnavailableError(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise RemoteUnavailableError(f"{method} {path} failed: {e}") from e

        if resp.status_code >= 500:
            logger.error(f"Remote error: {method} {path} -> {resp.status_code}")
            raise RemoteUnavailableError(
                f"{method} {path} -> {resp.status_code}",
                details={"status": resp.status_code},
            )
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("message") or resp.text
            except ValueError:
                detail = resp.text
            raise RemoteRejectedError(
                f"{method} {path} rejected: {detail}",
                details={"status": resp.status_code},
            )
        return resp

    async def insert(self, table: str, record: dict) -> dict:
        resp = await self._request(
            "POST",
            f"/{table}",
            params={"on_conflict": "id"},
            json=[record],
            headers={"Prefer": "return=representation,resolution=ignore-duplicates"},
        )
        rows = resp.json()
        if rows:
            return rows[0]

        # Duplicate id ignored: return what is stored.
        existing = await self.get(table, record["id"])
        if existing is None:
            raise RemoteRejectedError(
                f"Insert into {table} returned nothing",
                details={"id": record["id"]},
            )
        return existing

    async def update(self, table, record_id, changes, expect=None) -> Optional[dict]:
        params = self._params([eq("id", record_id), *(expect or ())])
        resp = await self._request(
            "PATCH",
            f"/{table}",
            params=params,
            json=changes,
            headers={"Prefer": "return=representation"},
        )
        rows = resp.json()
        return rows[0] if rows else None

    async def claim(self, table, record_ids, changes, expect=()) -> Optional[list[dict]]:
        ids = list(dict.fromkeys(record_ids))
        if not ids:
            return []
        restore = self._restore_values(changes, expect)
        resp = await self._request(
            "PATCH",
            f"/{table}",
            params=self._params([in_("id", ids), *expect]),
            json=changes,
            headers={"Prefer": "return=representation"},
        )
        rows = resp.json() or []
        if len(rows) == len(ids):
            by_id = {row["id"]: row for row in rows}
            return [by_id[i] for i in ids]

        if rows:
            claimed = [row["id"] for row in rows]
            logger.warning(f"Claim on {table} matched {len(rows)}/{len(ids)} rows, releasing {claimed}")
            await self._request(
                "PATCH",
                f"/{table}",
                params=self._params([in_("id", claimed), *[eq(k, v) for k, v in changes.items()]]),
                json=restore,
                headers={"Prefer": "return=minimal"},
            )
        return None

    @staticmethod
    def _restore_values(changes: dict, expect: Sequence[Filter]) -> dict:
        pinned = {}
        for f in expect:
            if f.op == "is_null":
                pinned[f.field] = None
            elif f.op == "eq":
                pinned[f.field] = f.value
        missing = [k for k in changes if k not in pinned]
        if missing:
            raise ValueError(f"Claim changes {missing} are not pinned by an expect filter")
        return {k: pinned[k] for k in changes}

    async def select(self, table, filters=(), order_by=None, descending=False) -> list[dict]:
        params = [("select", "*"), *self._params(filters)]
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        resp = await self._request("GET", f"/{table}", params=params)
        return resp.json() or []

    async def aclose(self) -> None:
        await self._client.aclose()
