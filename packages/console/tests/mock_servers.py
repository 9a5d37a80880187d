"""
Mock platform and completion servers for integration testing.

Platform: password auth, PostgREST-style table reads/inserts with ``eq.``
filters and ``order``, checkout function.
Completion: OpenAI-style streaming endpoint with canned deltas.
"""

import itertools
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import FastAPI, Header, HTTPException, Request, Response
from sse_starlette.sse import EventSourceResponse

PASSWORD = "secret"
EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)

# ── Mock platform ──


def _seed_tables() -> dict[str, list[dict[str, Any]]]:
    return {
        "profiles": [
            {"id": "u_alice", "email": "alice@example.com", "is_global_admin": False},
            {"id": "u_root", "email": "root@example.com", "is_global_admin": True},
        ],
        "organizations": [
            {"id": "org_acme", "name": "Acme", "slug": "acme", "logo_url": None},
            {"id": "org_beta", "name": "Beta", "slug": "beta", "logo_url": None},
            {"id": "org_gamma", "name": "Gamma", "slug": "gamma", "logo_url": None},
        ],
        "user_organizations": [
            {"user_id": "u_alice", "organization_id": "org_acme", "role": "user",
             "created_at": "2024-01-01T00:00:00+00:00"},
            {"user_id": "u_alice", "organization_id": "org_beta", "role": "organization_admin",
             "created_at": "2024-01-02T00:00:00+00:00"},
        ],
        "subscriptions": [
            {"user_id": "u_alice", "status": "active"},
        ],
        "chat_messages": [],
        "organization_ai_settings": [],
        "site_settings": [{"site_name": "Console", "logo_url": "/logo.png"}],
        "topbar_links": [],
        "links": [],
    }


def _matches(row: dict[str, Any], filters: dict[str, str]) -> bool:
    for column, expression in filters.items():
        if not expression.startswith("eq."):
            raise HTTPException(400, f"unsupported filter {expression}")
        if str(row.get(column)) != expression[3:]:
            return False
    return True


def _apply_order(rows: list[dict[str, Any]], order: Optional[str]) -> list[dict[str, Any]]:
    if not order:
        return rows
    # Stable sorts from the last key to the first
    for term in reversed(order.split(",")):
        column, _, direction = term.partition(".")
        rows = sorted(rows, key=lambda r: str(r.get(column, "")), reverse=direction == "desc")
    return rows


def create_platform_app() -> FastAPI:
    app = FastAPI(title="Mock Platform")
    tables = _seed_tables()
    ids = itertools.count(1)

    def _user_for(authorization: Optional[str]) -> dict[str, Any]:
        token = (authorization or "").removeprefix("Bearer ")
        for profile in tables["profiles"]:
            if token == f"token-{profile['id']}":
                return profile
        raise HTTPException(401, "invalid token")

    @app.post("/auth/v1/token")
    async def token(request: Request, grant_type: str):
        body = await request.json()
        for profile in tables["profiles"]:
            if profile["email"] == body.get("email") and body.get("password") == PASSWORD:
                return {"access_token": f"token-{profile['id']}", "token_type": "bearer"}
        raise HTTPException(400, "Invalid login credentials")

    @app.get("/auth/v1/user")
    async def user(authorization: Optional[str] = Header(None)):
        profile = _user_for(authorization)
        return {"id": profile["id"], "email": profile["email"], "user_metadata": {}}

    @app.post("/auth/v1/logout", status_code=204)
    async def logout(authorization: Optional[str] = Header(None)):
        _user_for(authorization)
        return Response(status_code=204)

    @app.get("/rest/v1/{table}")
    async def select(table: str, request: Request):
        if table not in tables:
            raise HTTPException(404, "relation does not exist")
        params = dict(request.query_params)
        select_clause = params.pop("select", "*")
        order = params.pop("order", None)
        limit = params.pop("limit", None)

        rows = [row for row in tables[table] if _matches(row, params)]
        rows = _apply_order(rows, order)
        if limit:
            rows = rows[: int(limit)]
        if select_clause.startswith("organization:organizations"):
            by_id = {org["id"]: org for org in tables["organizations"]}
            rows = [{"organization": by_id.get(row["organization_id"])} for row in rows]
        return rows

    @app.post("/rest/v1/{table}", status_code=201)
    async def insert(table: str, request: Request):
        if table not in tables:
            raise HTTPException(404, "relation does not exist")
        row = dict(await request.json())
        if table == "chat_messages":
            seq = next(ids)
            row["id"] = f"msg_{seq:04d}"
            # Inserts land in pairs per second, so ordering relies on the id tiebreak
            row["created_at"] = (EPOCH + timedelta(seconds=seq // 2)).isoformat()
            row.setdefault("tokens", None)
            # Newest first in storage; readers must ask for an order
            tables[table].insert(0, row)
        else:
            tables[table].append(row)
        return [row]

    @app.post("/functions/v1/checkout-session")
    async def checkout(request: Request):
        body = await request.json()
        if not body.get("priceId"):
            raise HTTPException(400, "priceId required")
        return {"url": f"https://checkout.example.com/pay/{body['userId']}/{body['priceId']}"}

    return app


# ── Mock completion endpoint ──


def create_completion_app(deltas: tuple[str, ...] = ("Hi", " there")) -> FastAPI:
    app = FastAPI(title="Mock Completions")
    received: list[dict[str, Any]] = []

    @app.post("/v1/chat/completions")
    async def completions(request: Request, authorization: Optional[str] = Header(None)):
        if authorization != "Bearer sk-integration":
            raise HTTPException(401, "bad api key")
        received.append(await request.json())

        async def events():
            yield {"data": json.dumps({"choices": [{"delta": {"role": "assistant"}}]})}
            for delta in deltas:
                yield {"data": json.dumps({"choices": [{"delta": {"content": delta}}]})}
            yield {"data": "[DONE]"}

        return EventSourceResponse(events())

    @app.get("/received")
    async def received_requests():
        return received

    return app
