"""
Platform client: the console's single adapter to the hosted backend.

Handles:
- Auth (GoTrue-style ``/auth/v1``): password sign-in, current user, sign-out
- Tables (PostgREST-style ``/rest/v1``): profiles, memberships, organizations,
  chat messages, AI settings, subscriptions, branding and links
- Functions (``/functions/v1``): checkout session creation
- Retry with backoff on 429, 5xx and connection errors

Every failure leaves this module as a ``PersistenceError`` (or a more specific
console error), never as a raw httpx or pydantic exception.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from saas_console_shared.schemas.chat import AIEndpointConfig, ChatMessage, NewChatMessage
from saas_console_shared.schemas.common import MessageRole, SubscriptionStatus
from saas_console_shared.schemas.directory import DirectoryLink, SiteSettings, TopBarLink
from saas_console_shared.schemas.organizations import (
    Membership,
    Organization,
    SessionIdentity,
)

from .errors import AuthRequired, ConfigMissing, OrganizationNotFound, PersistenceError
from .metrics import MetricsCollector

log = structlog.get_logger()

# Retry configuration
RETRY_BASE_SECONDS = 0.5


def _retry_after(value: str | None, default: float) -> float:
    """Seconds to wait for a 429. Only the delta-seconds form is honoured."""
    if value is None:
        return default
    try:
        return max(0.0, float(value))
    except ValueError:
        return default


class PlatformClient:
    """
    Talks to the backend-as-a-service on behalf of one signed-in user.

    Row-level access control is enforced by the platform; this client only
    shapes requests and translates failures.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        verify_tls: bool = True,
        request_timeout: int = 30,
        max_retries: int = 3,
        metrics: MetricsCollector | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url.rstrip("/")
        self._anon_key = anon_key
        self._verify_tls = verify_tls
        self._request_timeout = request_timeout
        self._max_retries = max(1, max_retries)
        self._metrics = metrics
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._access_token: str | None = None

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._url,
            timeout=httpx.Timeout(self._request_timeout),
            verify=self._verify_tls,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def set_access_token(self, token: str | None) -> None:
        self._access_token = token

    # --- Auth ---

    async def sign_in_with_password(self, email: str, password: str) -> str:
        """Exchange credentials for an access token and keep it for later calls."""
        resp = await self._send(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if resp.status_code in (400, 401):
            raise AuthRequired("Invalid login credentials", details={"email": email})
        self._raise_for_status(resp, "sign_in")
        payload = self._json(resp, "sign_in")
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise AuthRequired("Sign-in returned no access token", details={"email": email})
        self._access_token = token
        log.info("platform.signed_in", email=email)
        return token

    async def get_current_session(self) -> SessionIdentity | None:
        """The signed-in identity, or None when there is no valid session."""
        if not self._access_token:
            return None
        resp = await self._send("GET", "/auth/v1/user")
        if resp.status_code in (401, 403):
            return None
        self._raise_for_status(resp, "get_user")
        user = self._json(resp, "get_user")
        if not isinstance(user, dict) or not user.get("id"):
            raise PersistenceError(
                "Auth user response has no id", details={"operation": "get_user"}
            )

        rows = await self._select(
            "profiles",
            {"select": "id,email,is_global_admin", "id": f"eq.{user['id']}", "limit": "1"},
        )
        if rows:
            profile = rows[0]
            is_global_admin = bool(profile.get("is_global_admin"))
            email = profile.get("email") or user.get("email", "")
        else:
            # Profile row not provisioned yet; fall back to sign-up metadata
            metadata = user.get("user_metadata") or {}
            is_global_admin = bool(metadata.get("is_global_admin"))
            email = user.get("email", "")
        return SessionIdentity(
            user_id=user["id"], email=email, is_global_admin=is_global_admin
        )

    async def sign_out(self) -> None:
        if not self._access_token:
            return
        resp = await self._send("POST", "/auth/v1/logout")
        if resp.status_code not in (401, 403):
            self._raise_for_status(resp, "sign_out")
        self._access_token = None
        log.info("platform.signed_out")

    # --- Tenancy ---

    async def list_memberships(self, user_id: str) -> list[Membership]:
        rows = await self._select(
            "user_organizations",
            {
                "select": "user_id,organization_id,role",
                "user_id": f"eq.{user_id}",
                "order": "created_at.asc",
            },
        )
        return self._parse_rows(Membership, rows, "user_organizations")

    async def get_organization(self, organization_id: str) -> Organization:
        rows = await self._select(
            "organizations",
            {"select": "id,name,slug,logo_url", "id": f"eq.{organization_id}", "limit": "1"},
        )
        if not rows:
            raise OrganizationNotFound(organization_id)
        return self._parse_rows(Organization, rows, "organizations")[0]

    async def list_organizations(self) -> list[Organization]:
        rows = await self._select(
            "organizations", {"select": "id,name,slug,logo_url", "order": "name.asc"}
        )
        return self._parse_rows(Organization, rows, "organizations")

    async def list_member_organizations(self, user_id: str) -> list[Organization]:
        rows = await self._select(
            "user_organizations",
            {
                "select": "organization:organizations(id,name,slug,logo_url)",
                "user_id": f"eq.{user_id}",
            },
        )
        orgs = [row["organization"] for row in rows if row.get("organization")]
        return self._parse_rows(Organization, orgs, "organizations")

    # --- Chat ---

    async def list_messages(self, organization_id: str) -> list[ChatMessage]:
        rows = await self._select(
            "chat_messages",
            {
                "select": "id,role,content,created_at,tokens",
                "organization_id": f"eq.{organization_id}",
                "order": "created_at.asc,id.asc",
            },
        )
        return self._parse_rows(ChatMessage, rows, "chat_messages")

    async def append_message(
        self,
        organization_id: str,
        role: MessageRole,
        content: str,
        user_id: str,
    ) -> ChatMessage:
        body = NewChatMessage(
            organization_id=organization_id, role=role, content=content, user_id=user_id
        )
        resp = await self._request(
            "POST",
            "/rest/v1/chat_messages",
            json=body.model_dump(mode="json"),
            headers={"Prefer": "return=representation"},
            operation="append_message",
        )
        rows = self._json(resp, "append_message")
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            raise PersistenceError(
                "Message store did not return the stored message",
                details={"organization_id": organization_id},
            )
        return self._parse_rows(ChatMessage, rows, "chat_messages")[0]

    async def get_ai_config(self, organization_id: str) -> AIEndpointConfig | None:
        """The organization's AI settings, or None when no row exists.

        A row that fails validation is reported as ``ConfigMissing``.
        """
        rows = await self._select(
            "organization_ai_settings",
            {"select": "*", "organization_id": f"eq.{organization_id}", "limit": "1"},
        )
        if not rows:
            return None
        try:
            return AIEndpointConfig.model_validate(rows[0])
        except ValidationError as exc:
            log.warning(
                "platform.invalid_ai_config",
                organization_id=organization_id,
                errors=exc.error_count(),
            )
            raise ConfigMissing(
                "AI settings for this organization are incomplete",
                details={"organization_id": organization_id},
            ) from exc

    # --- Entitlements ---

    async def has_active_subscription(self, user_id: str) -> bool:
        rows = await self._select(
            "subscriptions",
            {
                "select": "user_id",
                "user_id": f"eq.{user_id}",
                "status": f"eq.{SubscriptionStatus.ACTIVE.value}",
                "limit": "1",
            },
        )
        return bool(rows)

    async def create_checkout_session(self, user_id: str, email: str, price_id: str) -> str:
        """Create a hosted checkout session and return its redirect URL."""
        resp = await self._request(
            "POST",
            "/functions/v1/checkout-session",
            json={"userId": user_id, "email": email, "priceId": price_id},
            operation="checkout_session",
        )
        payload = self._json(resp, "checkout_session")
        url = payload.get("url") if isinstance(payload, dict) else None
        if not url:
            raise PersistenceError("Checkout session returned no URL", details={"email": email})
        return url

    # --- Directory ---

    async def get_site_settings(self) -> SiteSettings | None:
        rows = await self._select("site_settings", {"select": "*", "limit": "1"})
        if not rows:
            return None
        return self._parse_rows(SiteSettings, rows, "site_settings")[0]

    async def list_topbar_links(self) -> list[TopBarLink]:
        rows = await self._select("topbar_links", {"select": "*", "order": "order.asc"})
        return self._parse_rows(TopBarLink, rows, "topbar_links")

    async def list_links(self) -> list[DirectoryLink]:
        rows = await self._select("links", {"select": "*", "order": "created_at.desc"})
        return self._parse_rows(DirectoryLink, rows, "links")

    # --- Plumbing ---

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {self._access_token or self._anon_key}",
        }

    async def _select(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        resp = await self._request(
            "GET", f"/rest/v1/{table}", params=params, operation=f"select_{table}"
        )
        rows = self._json(resp, f"select_{table}")
        if not isinstance(rows, list):
            raise PersistenceError(
                f"Unexpected response shape from {table}", details={"table": table}
            )
        return rows

    @staticmethod
    def _json(resp: httpx.Response, operation: str) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise PersistenceError(
                f"{operation} returned a body that is not JSON",
                details={"operation": operation, "status": resp.status_code},
            ) from exc

    @staticmethod
    def _parse_rows(model: type, rows: list[dict[str, Any]], table: str) -> list:
        try:
            return [model.model_validate(row) for row in rows]
        except ValidationError as exc:
            raise PersistenceError(
                f"Unexpected row shape in {table}", details={"table": table}
            ) from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        resp = await self._send(method, path, params=params, json=json, headers=headers)
        self._raise_for_status(resp, operation)
        return resp

    def _raise_for_status(self, resp: httpx.Response, operation: str) -> None:
        if resp.is_success:
            return
        if self._metrics:
            self._metrics.inc("platform_errors_total")
        log.error("platform.request_failed", operation=operation, status=resp.status_code)
        if resp.status_code == 401:
            raise AuthRequired("Session expired; sign in again", details={"operation": operation})
        raise PersistenceError(
            f"{operation} failed with status {resp.status_code}",
            details={"operation": operation, "status": resp.status_code},
        )

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        assert self._client
        merged = {**self._headers(), **(headers or {})}

        last_exc: Exception | None = None
        resp: httpx.Response | None = None
        for attempt in range(self._max_retries):
            try:
                if self._metrics:
                    self._metrics.inc("platform_requests_total")
                resp = await self._client.request(
                    method, path, params=params, json=json, headers=merged
                )
                if resp.status_code == 429:
                    retry_after = _retry_after(
                        resp.headers.get("Retry-After"), RETRY_BASE_SECONDS * (attempt + 1)
                    )
                    log.warning("platform.rate_limited", path=path, retry_after=retry_after)
                    if attempt + 1 < self._max_retries:
                        await asyncio.sleep(retry_after)
                    continue
                if resp.status_code < 500:
                    return resp
                last_exc = None
            except httpx.TransportError as exc:
                last_exc = exc
                resp = None

            if attempt + 1 >= self._max_retries:
                break
            backoff = RETRY_BASE_SECONDS * (2 ** attempt)
            if self._metrics:
                self._metrics.inc("platform_retries_total")
            log.warning(
                "platform.retry",
                path=path,
                attempt=attempt + 1,
                backoff=backoff,
                error=str(last_exc) if last_exc else f"status {resp.status_code}",
            )
            await asyncio.sleep(backoff)

        if resp is not None:
            return resp
        if self._metrics:
            self._metrics.inc("platform_errors_total")
        raise PersistenceError(
            f"Platform unreachable: {last_exc}", details={"path": path}
        ) from last_exc
