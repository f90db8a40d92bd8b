"""Async Microsoft Graph v1.0 client.

Writes are single calls that never raise for HTTP errors: they return a
RemoteResult so the retry policy and batch runner can classify them. Reads
used to build snapshots follow @odata.nextLink, go through the same rate
limiter and retry policy, and raise GraphRequestError when a page cannot be
fetched, because a partial snapshot would produce a wrong diff.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from .config import GRAPH_BASE_URL, MAX_GRAPH_PAGES, Config
from .operations import RemoteResult
from .rate_limiter import RateLimiter
from .retry import RetryPolicy
from .security import TokenProvider

logger = logging.getLogger(__name__)

USER_SELECT = "id,displayName,mail,userPrincipalName"
CHANNEL_SELECT = "id,displayName,description,membershipType"
TEAM_SELECT = "id,displayName,description"
TEAM_FILTER = "resourceProvisioningOptions/Any(x:x eq 'Team')"
DEFAULT_PAGE_SIZE = 100
DEFAULT_SEARCH_TOP = 10


class GraphRequestError(Exception):
    """Raised when a Graph read fails after retries."""

    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header (delta-seconds or HTTP-date) into seconds.

    Returns None for anything unusable, including "inf" and "nan".
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(seconds, 0.0) if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max((when - datetime.now(UTC)).total_seconds(), 0.0)


def _response_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class GraphClient:
    """Thin async wrapper over httpx for Graph REST calls.

    Usage:
        async with GraphClient(provider, rate_limiter=limiter) as client:
            members = await client.list_team_members(team_id)
            result = await client.send("POST", f"/teams/{team_id}/members", json=body)
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = GRAPH_BASE_URL,
        timeout_seconds: float = 30,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._rate_limiter = rate_limiter
        self._retry = retry_policy or RetryPolicy()
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
        )
        self._request_count = 0

    @classmethod
    def from_config(
        cls,
        config: Config,
        token_provider: TokenProvider,
        rate_limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GraphClient:
        return cls(
            token_provider=token_provider,
            base_url=config.graph_base_url,
            timeout_seconds=config.request_timeout_seconds,
            rate_limiter=rate_limiter,
            retry_policy=RetryPolicy.from_config(config),
            transport=transport,
        )

    @property
    def request_count(self) -> int:
        """Number of HTTP requests issued, for diagnostics."""
        return self._request_count

    async def __aenter__(self) -> GraphClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _headers(self, request_id: str | None) -> dict[str, str]:
        # azure-identity credentials are synchronous and may hit the network
        loop = asyncio.get_running_loop()
        token = await loop.run_in_executor(None, self._token_provider.get_token)
        headers = {
            "Authorization": f"Bearer {token.token}",
            "Accept": "application/json",
        }
        if request_id:
            headers["client-request-id"] = request_id
        return headers

    async def send(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> RemoteResult:
        """Issue one request and describe its result.

        Network errors and timeouts become RemoteResult(http_status=0).

        Raises:
            AuthError: If no access token can be obtained.
        """
        headers = await self._headers(request_id)
        self._request_count += 1

        try:
            response = await self._http.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.TimeoutException as e:
            logger.warning(
                "Graph request timed out",
                extra={"method": method, "path": path, "error": str(e)},
            )
            return RemoteResult.failed(0, body=f"Timeout: {e}")
        except httpx.TransportError as e:
            logger.warning(
                "Graph request failed",
                extra={"method": method, "path": path, "error": str(e)},
            )
            return RemoteResult.failed(0, body=f"{type(e).__name__}: {e}")

        body = _response_body(response)
        if response.is_success:
            return RemoteResult.ok(response.status_code, body)

        logger.debug(
            "Graph returned error status",
            extra={"method": method, "path": path, "http_status": response.status_code},
        )
        return RemoteResult.failed(
            response.status_code,
            body=body,
            retry_after_seconds=parse_retry_after(response.headers.get("Retry-After")),
        )

    async def _get_with_retry(self, path: str, params: dict[str, Any] | None) -> RemoteResult:
        before = self._rate_limiter.acquire if self._rate_limiter is not None else None
        result = await self._retry.execute(
            lambda: self.send("GET", path, params=params),
            before_attempt=before,
            description=f"GET {path}",
        )
        if not result.succeeded or result.last_result is None:
            error = result.last_error
            status = error.http_status if error else None
            message = error.message if error else "unknown error"
            raise GraphRequestError(f"GET {path} failed: {message}", http_status=status)
        return result.last_result

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET a single resource.

        Raises:
            GraphRequestError: If the request fails after retries.
        """
        result = await self._get_with_retry(path, params)
        return result.body if isinstance(result.body, dict) else {}

    async def get_all(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        max_pages: int = MAX_GRAPH_PAGES,
    ) -> list[dict[str, Any]]:
        """GET a collection, following @odata.nextLink.

        Raises:
            GraphRequestError: If any page fails or max_pages is exceeded.
        """
        items: list[dict[str, Any]] = []
        url = path
        page_params = dict(params or {})

        for _ in range(max_pages):
            result = await self._get_with_retry(url, page_params or None)
            data = result.body if isinstance(result.body, dict) else {}
            items.extend(data.get("value", []))

            next_link = data.get("@odata.nextLink")
            if not next_link:
                return items

            # nextLink is absolute and already carries the query
            url = next_link
            page_params = {}

        raise GraphRequestError(f"GET {path} exceeded {max_pages} pages")

    async def get_team(self, team_id: str) -> dict[str, Any]:
        return await self.get(f"/teams/{team_id}")

    async def list_team_members(self, team_id: str) -> list[dict[str, Any]]:
        """Current members of a team as aadUserConversationMember records."""
        members = await self.get_all(f"/teams/{team_id}/members")
        logger.info("Fetched team members", extra={"team_id": team_id, "count": len(members)})
        return members

    async def list_group_members(self, group_id: str) -> list[dict[str, Any]]:
        """User members of an Entra ID group (nested groups and devices excluded)."""
        members = await self.get_all(
            f"/groups/{group_id}/members/microsoft.graph.user",
            params={"$select": USER_SELECT, "$top": DEFAULT_PAGE_SIZE},
        )
        logger.info("Fetched group members", extra={"group_id": group_id, "count": len(members)})
        return members

    async def list_channels(self, team_id: str) -> list[dict[str, Any]]:
        channels = await self.get_all(
            f"/teams/{team_id}/channels", params={"$select": CHANNEL_SELECT}
        )
        logger.info("Fetched channels", extra={"team_id": team_id, "count": len(channels)})
        return channels

    async def list_teams(self) -> list[dict[str, Any]]:
        """Every team in the tenant, as its backing Microsoft 365 group."""
        teams = await self.get_all(
            "/groups",
            params={"$filter": TEAM_FILTER, "$select": TEAM_SELECT, "$top": DEFAULT_PAGE_SIZE},
        )
        logger.info("Fetched teams", extra={"count": len(teams)})
        return teams

    async def search_users(self, query: str, top: int = DEFAULT_SEARCH_TOP) -> list[dict[str, Any]]:
        """Users whose display name, mail or UPN starts with query.

        Returns at most `top` users from a single page.
        """
        literal = query.replace("'", "''")
        search_filter = " or ".join(
            f"startswith({prop},'{literal}')"
            for prop in ("displayName", "mail", "userPrincipalName")
        )
        body = await self.get(
            "/users",
            params={"$filter": search_filter, "$select": USER_SELECT, "$top": top},
        )
        users = body.get("value", [])
        logger.info("Searched users", extra={"query": query, "count": len(users)})
        return users
