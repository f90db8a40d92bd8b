"""Pydantic models for sync job specifications with validation.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Translation to ReconcileOptions for the reconciliation engine
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import DEFAULT_MAX_REMOVALS_PER_RUN
from .reconciliation import ReconcileOptions

GUID_PATTERN = r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"

# =============================================================================
# Base Models
# =============================================================================


class BaseJob(BaseModel):
    """Fields shared by every sync job."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: str | None = None
    team_id: Annotated[str, Field(alias="teamId", pattern=GUID_PATTERN)]

    # Removal is opt-in; without it only additions are planned
    allow_removal: bool = Field(False, alias="allowRemoval")
    protected: list[str] = Field(default_factory=list)
    max_removals: Annotated[int, Field(ge=0, alias="maxRemovals")] = DEFAULT_MAX_REMOVALS_PER_RUN

    @property
    def label(self) -> str:
        return self.name or self.team_id

    def to_options(self) -> ReconcileOptions:
        raise NotImplementedError("Subclasses must implement to_options")


# =============================================================================
# Team Membership
# =============================================================================


class MemberEntry(BaseModel):
    """One desired member in an inline member list."""

    model_config = {"extra": "ignore"}

    user: Annotated[str, Field(min_length=1)]
    role: Literal["member", "owner"] = "member"

    @field_validator("user")
    @classmethod
    def strip_user(cls, v: str) -> str:
        return v.strip()


class MemberSource(BaseModel):
    """Where desired membership comes from: an Entra ID group or a list."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    group_id: Annotated[str | None, Field(alias="groupId", pattern=GUID_PATTERN)] = None
    members: list[MemberEntry] = Field(default_factory=list)
    # Role given to members that come from a group
    default_role: Literal["member", "owner"] = Field("member", alias="defaultRole")

    @model_validator(mode="after")
    def exactly_one_source(self) -> MemberSource:
        if self.group_id and self.members:
            raise ValueError("source must set either groupId or members, not both")
        if not self.group_id and not self.members:
            raise ValueError("source must set groupId or a non-empty members list")
        return self


class TeamMembershipJob(BaseJob):
    """Keep a team's membership in line with a group or a member list."""

    kind: Literal["TeamMembershipSync"] = "TeamMembershipSync"
    source: MemberSource
    # Also reconcile owner/member role for users already in the team
    sync_roles: bool = Field(False, alias="syncRoles")

    def to_options(self) -> ReconcileOptions:
        return ReconcileOptions(
            allow_removal=self.allow_removal,
            compare_attributes=("role",) if self.sync_roles else (),
            protected_keys=frozenset(self.protected),
            max_removals=self.max_removals,
            scope=self.team_id,
        )


# =============================================================================
# Channels
# =============================================================================


class ChannelEntry(BaseModel):
    """One desired channel."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    display_name: Annotated[str, Field(min_length=1, max_length=50, alias="displayName")]
    description: str = ""
    membership_type: Literal["standard", "private", "shared"] = Field(
        "standard", alias="membershipType"
    )

    @field_validator("display_name")
    @classmethod
    def validate_display_name(cls, v: str) -> str:
        # Teams rejects these characters in channel names
        forbidden = set('~#%&*{}+/\\:<>?|\'"')
        bad = sorted(forbidden.intersection(v))
        if bad:
            raise ValueError(f"displayName contains forbidden characters: {''.join(bad)}")
        return v.strip()


class ChannelJob(BaseJob):
    """Keep a team's channels in line with a declared list."""

    kind: Literal["ChannelSync"] = "ChannelSync"
    channels: list[ChannelEntry] = Field(min_length=1)
    sync_descriptions: bool = Field(False, alias="syncDescriptions")

    def to_options(self) -> ReconcileOptions:
        # The General channel always exists and can never be removed
        return ReconcileOptions(
            allow_removal=self.allow_removal,
            compare_attributes=("description",) if self.sync_descriptions else (),
            protected_keys=frozenset([*self.protected, "General"]),
            max_removals=self.max_removals,
            scope=self.team_id,
        )


SyncJob = TeamMembershipJob | ChannelJob

JOB_CLASSES: dict[str, type[BaseJob]] = {
    "TeamMembershipSync": TeamMembershipJob,
    "ChannelSync": ChannelJob,
}


def get_job_class(kind: str) -> type[BaseJob]:
    """Get the job model class for a kind.

    Raises:
        ValueError: If kind is not recognized.
    """
    job_class = JOB_CLASSES.get(kind)
    if job_class is None:
        raise ValueError(f"Unknown job kind '{kind}'. Valid kinds: {list(JOB_CLASSES)}")
    return job_class
