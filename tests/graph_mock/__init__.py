"""Microsoft Graph mock for integration testing.

Provides an in-memory tenant that answers Graph v1.0 requests through
httpx.MockTransport, so the real GraphClient, executors and Synchronizer run
unchanged against it.

Key Features:
- In-memory users, groups, teams, members and channels
- @odata.nextLink paging with a configurable page size
- Error injection (429 with Retry-After, 5xx, 404, 409, network errors)
- Request recording for asserting on what was sent
- Fake token provider and deterministic clock

Usage:
    from graph_mock import MockGraphTenant, MockTokenProvider

    tenant = MockGraphTenant()
    team_id = tenant.add_team("Engineering")
    tenant.inject("POST", "/members", 429, retry_after="0")

    async with GraphClient(MockTokenProvider(), transport=tenant.transport) as client:
        ...

    assert len(tenant.writes) == 2
"""

from .clock import FakeClock
from .credential import MockCredential, MockTokenProvider
from .tenant import BASE_URL, MockGraphTenant, RecordedRequest, mock_id

__all__ = [
    "BASE_URL",
    "FakeClock",
    "MockCredential",
    "MockGraphTenant",
    "MockTokenProvider",
    "RecordedRequest",
    "mock_id",
]
