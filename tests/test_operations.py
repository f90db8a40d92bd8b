"""Tests for operations, remote results and error details."""

import pytest

from teamsops.operations import (
    ErrorDetail,
    GraphOperation,
    OperationKind,
    OperationOutcome,
    OperationStatus,
    RemoteResult,
    make_idempotency_key,
)

TEAM_ID = "11111111-2222-3333-4444-555555555555"


class TestIdempotencyKey:
    """Tests for deterministic idempotency keys."""

    def test_same_inputs_same_key(self) -> None:
        """Test that the key only depends on kind, target and scope."""
        first = GraphOperation.add("alice@contoso.com", {"role": "owner"}, scope=TEAM_ID)
        second = GraphOperation.add("alice@contoso.com", {"role": "member"}, scope=TEAM_ID)

        assert first.idempotency_key == second.idempotency_key

    def test_kind_changes_key(self) -> None:
        """Test that Add and Remove of the same target differ."""
        add = GraphOperation.add("alice@contoso.com", scope=TEAM_ID)
        remove = GraphOperation.remove("alice@contoso.com", scope=TEAM_ID)

        assert add.idempotency_key != remove.idempotency_key

    def test_scope_changes_key(self) -> None:
        """Test that the same change in two teams gets two keys."""
        key_a = make_idempotency_key(OperationKind.ADD, "alice@contoso.com", "team-a")
        key_b = make_idempotency_key(OperationKind.ADD, "alice@contoso.com", "team-b")

        assert key_a != key_b

    def test_upn_case_does_not_change_key(self) -> None:
        """Test that one user spelled two ways gets one key; the spelling is kept."""
        mixed = GraphOperation.add("Alice@Contoso.com", scope=TEAM_ID)
        lower = GraphOperation.add(" alice@contoso.com", scope=TEAM_ID)

        assert mixed.idempotency_key == lower.idempotency_key
        assert mixed.target_key == "Alice@Contoso.com"

    def test_channel_name_case_changes_key(self) -> None:
        """Test that non-UPN keys are hashed exactly."""
        releases = GraphOperation.add("Releases", scope=TEAM_ID)
        lowered = GraphOperation.add("releases", scope=TEAM_ID)

        assert releases.idempotency_key != lowered.idempotency_key

    def test_explicit_key_must_match(self) -> None:
        """Test that a caller-supplied key is validated."""
        with pytest.raises(ValueError):
            GraphOperation(OperationKind.ADD, "alice@contoso.com", idempotency_key="made-up")

    def test_explicit_matching_key_accepted(self) -> None:
        """Test that the derived key can be passed explicitly."""
        key = make_idempotency_key(OperationKind.ADD, "alice@contoso.com")
        operation = GraphOperation(OperationKind.ADD, "alice@contoso.com", idempotency_key=key)

        assert operation.idempotency_key == key


class TestGraphOperation:
    """Tests for GraphOperation immutability and helpers."""

    def test_empty_target_rejected(self) -> None:
        """Test that an operation needs a target."""
        with pytest.raises(ValueError):
            GraphOperation.add("")

    def test_payload_is_read_only(self) -> None:
        """Test that payloads cannot be mutated after creation."""
        source = {"role": "owner"}
        operation = GraphOperation.add("alice@contoso.com", source)
        source["role"] = "member"

        assert operation.payload["role"] == "owner"
        with pytest.raises(TypeError):
            operation.payload["role"] = "member"  # type: ignore[index]

    def test_nested_payload_is_read_only(self) -> None:
        roles = ["owner"]
        operation = GraphOperation.update("alice@contoso.com", {"roles": roles})
        roles.clear()

        assert operation.payload["roles"] == ("owner",)

    def test_operations_are_hashable(self) -> None:
        """Test that operations can be used in sets."""
        operation = GraphOperation.remove("bob@contoso.com", {"membershipId": "m-1"})

        assert operation in {operation}

    def test_describe(self) -> None:
        """Test the human-readable form."""
        assert GraphOperation.add("alice").describe() == "Add(alice)"
        assert GraphOperation.remove("alice", scope="team").describe() == "Remove(alice) in team"


class TestErrorDetail:
    """Tests for ErrorDetail.from_result()."""

    def test_graph_error_body(self) -> None:
        """Test that Graph's error code and message are used."""
        result = RemoteResult.failed(
            403, body={"error": {"code": "Forbidden", "message": "Insufficient privileges"}}
        )

        error = ErrorDetail.from_result(result, retryable=False)

        assert error.code == "Forbidden"
        assert error.message == "Insufficient privileges"
        assert error.http_status == 403
        assert error.retryable is False

    def test_plain_status(self) -> None:
        """Test the fallback code and message for an empty body."""
        error = ErrorDetail.from_result(RemoteResult.failed(503), retryable=True)

        assert error.code == "http_503"
        assert "503" in error.message
        assert error.retryable is True

    def test_network_error(self) -> None:
        """Test that status 0 is reported as a network error."""
        error = ErrorDetail.from_result(RemoteResult.failed(0, body="Timeout"), retryable=True)

        assert error.code == "network_error"
        assert error.message == "Timeout"
        assert error.http_status is None


class TestOperationOutcome:
    """Tests for OperationOutcome."""

    def test_succeeded_property(self) -> None:
        operation = GraphOperation.add("alice")

        ok = OperationOutcome(operation, OperationStatus.SUCCEEDED, attempts=1)
        failed = OperationOutcome(operation, OperationStatus.FAILED_RETRYABLE, attempts=5)

        assert ok.succeeded
        assert not failed.succeeded
