"""
Resource visibility resolver.

One decision function serves every shareable entity. What differs between
tasks, retrospectives, schedules and documents is expressed as an
`EntityPolicy` (capability flags), and the per-record data the rules need is
collected into `ResourceFacts` by the router that loaded the record.

Everything here is pure and synchronous: no I/O, no mutation. The only
database-derived input besides the facts is `team_grants`, the set of team
ids whose TeamShare edge grants this entity's feature to the principal's
team (see `team_shares.granting_team_ids`).

Read rules are evaluated in a fixed order and the first match is reported
by `explain_access`:

    owner -> top_role -> assignee -> team scope / visibility
          -> explicit share -> team share

Write and delete are narrower and are spelled out per entity. Callers load
the record first and raise NOT_FOUND before asking for a decision.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional

from errors import AuthorizationError
from models import Visibility
from principals import CurrentUser
from roles import is_top_role


class AccessMode(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


@dataclass(frozen=True)
class EntityPolicy:
    name: str
    team_scoped: bool = True
    visibility_gated: bool = False  # PRIVATE/TEAM/ALL + draft flag replace plain team scope
    explicit_shares: bool = False
    assignee_reads: bool = False
    assignee_writes: bool = False
    share_flag: Optional[str] = None  # TeamShare column that extends reads across teams
    top_role_writes: bool = False
    top_role_deletes: bool = False
    assignee_deletes: bool = False


@dataclass(frozen=True)
class ResourceFacts:
    owner_id: str
    assignee_id: Optional[str] = None
    team_ids: FrozenSet[str] = field(default_factory=frozenset)
    owner_team_id: Optional[str] = None
    visibility: Optional[Visibility] = None
    is_draft: bool = False
    shared_user_ids: FrozenSet[str] = field(default_factory=frozenset)
    shared_team_ids: FrozenSet[str] = field(default_factory=frozenset)


TASK_POLICY = EntityPolicy(
    name="task",
    assignee_reads=True,
    assignee_writes=True,
    assignee_deletes=True,
    share_flag="share_tasks",
    top_role_writes=True,
    top_role_deletes=True,
)

RETROSPECTIVE_POLICY = EntityPolicy(
    name="retrospective",
    visibility_gated=True,
    explicit_shares=True,
    top_role_deletes=True,
)

SCHEDULE_POLICY = EntityPolicy(
    name="schedule",
    share_flag="share_schedules",
    top_role_writes=True,
    top_role_deletes=True,
)

DOCUMENT_POLICY = EntityPolicy(
    name="document",
    top_role_writes=True,
    top_role_deletes=True,
)


def _read_rule(policy: EntityPolicy, facts: ResourceFacts, principal: CurrentUser,
               team_grants: FrozenSet[str]) -> Optional[str]:
    if principal.id == facts.owner_id:
        return "owner"
    if is_top_role(principal.role):
        return "top_role"
    if policy.assignee_reads and facts.assignee_id and principal.id == facts.assignee_id:
        return "assignee"

    if policy.visibility_gated:
        if not facts.is_draft:
            if facts.visibility == Visibility.ALL:
                return "visibility_all"
            if (facts.visibility == Visibility.TEAM and facts.owner_team_id
                    and facts.owner_team_id == principal.team_id):
                return "visibility_team"
    elif policy.team_scoped and principal.team_id and principal.team_id in facts.team_ids:
        return "team_member"

    # Drafts stay with their owner (and the top role) whatever was shared.
    if policy.explicit_shares and not facts.is_draft:
        if principal.id in facts.shared_user_ids:
            return "shared_with_user"
        if principal.team_id and principal.team_id in facts.shared_team_ids:
            return "shared_with_team"

    if policy.share_flag and facts.team_ids & team_grants:
        return "team_share"
    return None


def _write_rule(policy: EntityPolicy, facts: ResourceFacts, principal: CurrentUser,
                mode: AccessMode) -> Optional[str]:
    if principal.id == facts.owner_id:
        return "owner"
    is_assignee = bool(facts.assignee_id) and principal.id == facts.assignee_id
    if mode == AccessMode.DELETE:
        if policy.assignee_deletes and is_assignee:
            return "assignee"
        if policy.top_role_deletes and is_top_role(principal.role):
            return "top_role"
        return None
    if policy.assignee_writes and is_assignee:
        return "assignee"
    if policy.top_role_writes and is_top_role(principal.role):
        return "top_role"
    return None


def explain_access(
    policy: EntityPolicy,
    facts: ResourceFacts,
    principal: CurrentUser,
    mode: AccessMode = AccessMode.READ,
    team_grants: FrozenSet[str] = frozenset(),
) -> Optional[str]:
    """Name of the first rule that grants access, or None when denied."""
    mode = AccessMode(mode)
    if mode == AccessMode.READ:
        return _read_rule(policy, facts, principal, frozenset(team_grants))
    return _write_rule(policy, facts, principal, mode)


def can_access(
    policy: EntityPolicy,
    facts: ResourceFacts,
    principal: CurrentUser,
    mode: AccessMode = AccessMode.READ,
    team_grants: FrozenSet[str] = frozenset(),
) -> bool:
    return explain_access(policy, facts, principal, mode, team_grants) is not None


def ensure_access(
    policy: EntityPolicy,
    facts: ResourceFacts,
    principal: CurrentUser,
    mode: AccessMode = AccessMode.READ,
    team_grants: FrozenSet[str] = frozenset(),
) -> str:
    rule = explain_access(policy, facts, principal, mode, team_grants)
    if rule is None:
        raise AuthorizationError(f"Not allowed to {AccessMode(mode).value} this {policy.name}")
    return rule
