"""Executors that turn GraphOperations into Graph requests.

Each executor is bound to one team and is called once per attempt. Because
a retried call may follow an attempt that actually landed, executors treat
"already applied" answers as success: 409 for an Add and 404 for a Remove.
"""

from __future__ import annotations

import logging
from typing import Any

from .graph_client import GraphClient
from .operations import GraphOperation, OperationKind, RemoteResult

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409

GRAPH_USER_BIND = "https://graph.microsoft.com/v1.0/users('{user}')"
MEMBER_ODATA_TYPE = "#microsoft.graph.aadUserConversationMember"

OWNER_ROLE = "owner"
MEMBER_ROLE = "member"
GENERAL_CHANNEL_NAME = "General"


def roles_for(role: str | None) -> list[str]:
    """Graph role list for a role name; members have no roles."""
    return [OWNER_ROLE] if (role or MEMBER_ROLE).lower() == OWNER_ROLE else []


def role_from_roles(roles: list[str] | None) -> str:
    """Inverse of roles_for, for observed membership records."""
    return OWNER_ROLE if roles and OWNER_ROLE in [r.lower() for r in roles] else MEMBER_ROLE


def _converged(operation: GraphOperation, result: RemoteResult) -> RemoteResult:
    """Map "already applied" failures to success."""
    if result.success:
        return result
    if operation.kind == OperationKind.ADD and result.http_status == HTTP_CONFLICT:
        logger.info("Add already applied", extra={"operation": operation.describe()})
        return RemoteResult.ok(result.http_status, result.body)
    if operation.kind == OperationKind.REMOVE and result.http_status == HTTP_NOT_FOUND:
        logger.info("Remove already applied", extra={"operation": operation.describe()})
        return RemoteResult.ok(result.http_status, result.body)
    return result


class TeamMembershipExecutor:
    """Add, update or remove members of one team.

    Payload keys:
        userId: Entra object id or UPN to bind (defaults to the target key).
        role: "owner" or "member" (Add/Update).
        membershipId: conversation member id (Update/Remove).
    """

    def __init__(self, client: GraphClient, team_id: str) -> None:
        self._client = client
        self._team_id = team_id

    @property
    def team_id(self) -> str:
        return self._team_id

    async def __call__(self, operation: GraphOperation) -> RemoteResult:
        payload = operation.payload
        request_id = operation.idempotency_key

        match operation.kind:
            case OperationKind.ADD:
                user = payload.get("userId") or operation.target_key
                body: dict[str, Any] = {
                    "@odata.type": MEMBER_ODATA_TYPE,
                    "roles": roles_for(payload.get("role")),
                    "user@odata.bind": GRAPH_USER_BIND.format(user=user),
                }
                result = await self._client.send(
                    "POST", f"/teams/{self._team_id}/members", json=body, request_id=request_id
                )

            case OperationKind.UPDATE:
                membership_id = self._membership_id(operation)
                body = {
                    "@odata.type": MEMBER_ODATA_TYPE,
                    "roles": roles_for(payload.get("role")),
                }
                result = await self._client.send(
                    "PATCH",
                    f"/teams/{self._team_id}/members/{membership_id}",
                    json=body,
                    request_id=request_id,
                )

            case OperationKind.REMOVE:
                membership_id = self._membership_id(operation)
                result = await self._client.send(
                    "DELETE",
                    f"/teams/{self._team_id}/members/{membership_id}",
                    request_id=request_id,
                )

            case _:
                raise ValueError(f"Unsupported operation kind: {operation.kind}")

        return _converged(operation, result)

    @staticmethod
    def _membership_id(operation: GraphOperation) -> str:
        membership_id = operation.payload.get("membershipId")
        if not membership_id:
            raise ValueError(f"{operation.describe()} requires payload.membershipId")
        return str(membership_id)


class ChannelExecutor:
    """Create, update or delete channels of one team.

    Payload keys:
        displayName, description, membershipType (Add)
        channelId (Update/Remove)
    """

    def __init__(self, client: GraphClient, team_id: str) -> None:
        self._client = client
        self._team_id = team_id

    @property
    def team_id(self) -> str:
        return self._team_id

    async def __call__(self, operation: GraphOperation) -> RemoteResult:
        payload = operation.payload
        request_id = operation.idempotency_key

        match operation.kind:
            case OperationKind.ADD:
                body = {
                    "displayName": payload.get("displayName") or operation.target_key,
                    "description": payload.get("description") or "",
                    "membershipType": payload.get("membershipType") or "standard",
                }
                result = await self._client.send(
                    "POST", f"/teams/{self._team_id}/channels", json=body, request_id=request_id
                )

            case OperationKind.UPDATE:
                channel_id = self._channel_id(operation)
                result = await self._client.send(
                    "PATCH",
                    f"/teams/{self._team_id}/channels/{channel_id}",
                    json={"description": payload.get("description") or ""},
                    request_id=request_id,
                )

            case OperationKind.REMOVE:
                if operation.target_key.lower() == GENERAL_CHANNEL_NAME.lower():
                    raise ValueError("The General channel cannot be deleted")
                channel_id = self._channel_id(operation)
                result = await self._client.send(
                    "DELETE",
                    f"/teams/{self._team_id}/channels/{channel_id}",
                    request_id=request_id,
                )

            case _:
                raise ValueError(f"Unsupported operation kind: {operation.kind}")

        return _converged(operation, result)

    @staticmethod
    def _channel_id(operation: GraphOperation) -> str:
        channel_id = operation.payload.get("channelId") or operation.payload.get("id")
        if not channel_id:
            raise ValueError(f"{operation.describe()} requires payload.channelId")
        return str(channel_id)
