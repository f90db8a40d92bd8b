"""Units of work and their outcomes.

A GraphOperation is one idempotent change against Microsoft Graph, such as
"add user X to team Y". The BatchRunner turns each operation into exactly
one OperationOutcome.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .snapshot import freeze, normalize_identity

# Fixed namespace so idempotency keys are stable across processes and hosts
IDEMPOTENCY_NAMESPACE = uuid.UUID("6f1c2a4e-8d3b-5c7a-9e0f-1b2c3d4e5f60")


class OperationKind(str, Enum):
    """Kinds of change the reconciliation engine can emit."""

    ADD = "Add"
    REMOVE = "Remove"
    UPDATE = "Update"


class OperationStatus(str, Enum):
    """Terminal status of an operation after the batch run."""

    SUCCEEDED = "Succeeded"
    FAILED_TERMINAL = "FailedTerminal"
    FAILED_RETRYABLE = "FailedRetryable"


def make_idempotency_key(kind: OperationKind, target_key: str, scope: str = "") -> str:
    """Derive a deterministic idempotency key.

    The key is a UUIDv5 of (kind, target) namespaced by scope, so it can be
    sent as Graph's client-request-id header. The target is hashed in its
    normalized form, so "Alice@Contoso.com" and "alice@contoso.com" share a key.
    """
    namespace = uuid.uuid5(IDEMPOTENCY_NAMESPACE, scope) if scope else IDEMPOTENCY_NAMESPACE
    return str(uuid.uuid5(namespace, f"{kind.value}:{normalize_identity(target_key)}"))


def _freeze(payload: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return freeze(payload or {})


@dataclass(frozen=True)
class GraphOperation:
    """One idempotent unit of work.

    Attributes:
        kind: Add, Remove or Update.
        target_key: Identity the operation applies to (UPN, GUID, channel name).
        payload: Attribute bag the executor needs (user id, membership id, roles).
        scope: Container the operation applies to, e.g. a team id.
        idempotency_key: Derived from (kind, target_key) and scope.
    """

    kind: OperationKind
    target_key: str
    payload: Mapping[str, Any] = field(default_factory=dict, hash=False)
    scope: str = ""
    idempotency_key: str = ""

    def __post_init__(self) -> None:
        if not self.target_key:
            raise ValueError("target_key cannot be empty")
        object.__setattr__(self, "payload", _freeze(self.payload))
        expected = make_idempotency_key(self.kind, self.target_key, self.scope)
        if not self.idempotency_key:
            object.__setattr__(self, "idempotency_key", expected)
        elif self.idempotency_key != expected:
            raise ValueError(
                f"idempotency_key for {self.kind.value}:{self.target_key} must be {expected}"
            )

    @classmethod
    def add(
        cls, target_key: str, payload: Mapping[str, Any] | None = None, scope: str = ""
    ) -> GraphOperation:
        return cls(OperationKind.ADD, target_key, _freeze(payload), scope)

    @classmethod
    def remove(
        cls, target_key: str, payload: Mapping[str, Any] | None = None, scope: str = ""
    ) -> GraphOperation:
        return cls(OperationKind.REMOVE, target_key, _freeze(payload), scope)

    @classmethod
    def update(
        cls, target_key: str, payload: Mapping[str, Any] | None = None, scope: str = ""
    ) -> GraphOperation:
        return cls(OperationKind.UPDATE, target_key, _freeze(payload), scope)

    def describe(self) -> str:
        """Short human-readable form used in logs and reports."""
        if self.scope:
            return f"{self.kind.value}({self.target_key}) in {self.scope}"
        return f"{self.kind.value}({self.target_key})"


@dataclass(frozen=True)
class RemoteResult:
    """Result of one remote call.

    http_status is 0 when no HTTP response was received (network error or
    timeout). retry_after_seconds is the server's Retry-After hint, if any.
    """

    success: bool
    http_status: int
    retry_after_seconds: float | None = None
    body: Any = None

    @classmethod
    def ok(cls, http_status: int = 200, body: Any = None) -> RemoteResult:
        return cls(success=True, http_status=http_status, body=body)

    @classmethod
    def failed(
        cls,
        http_status: int,
        body: Any = None,
        retry_after_seconds: float | None = None,
    ) -> RemoteResult:
        return cls(
            success=False,
            http_status=http_status,
            retry_after_seconds=retry_after_seconds,
            body=body,
        )


@dataclass(frozen=True)
class ErrorDetail:
    """Why an operation did not succeed."""

    code: str
    message: str
    http_status: int | None = None
    retryable: bool = False

    @classmethod
    def from_result(cls, result: RemoteResult, retryable: bool) -> ErrorDetail:
        """Build an ErrorDetail from a failed RemoteResult.

        Graph error bodies look like {"error": {"code": ..., "message": ...}}.
        """
        code = f"http_{result.http_status}" if result.http_status else "network_error"
        message = ""
        if isinstance(result.body, dict):
            error = result.body.get("error")
            if isinstance(error, dict):
                code = str(error.get("code") or code)
                message = str(error.get("message") or "")
        elif isinstance(result.body, str):
            message = result.body
        if not message:
            message = (
                f"Graph returned HTTP {result.http_status}"
                if result.http_status
                else "No response from Graph"
            )
        return cls(
            code=code,
            message=message,
            http_status=result.http_status or None,
            retryable=retryable,
        )


@dataclass(frozen=True)
class OperationOutcome:
    """Final fate of one operation; immutable once created."""

    operation: GraphOperation
    status: OperationStatus
    attempts: int
    last_error: ErrorDetail | None = None
    elapsed_ms: int = 0
    index: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == OperationStatus.SUCCEEDED


# Executor contract: perform one remote call for an operation
Executor = Callable[[GraphOperation], Awaitable[RemoteResult]]
