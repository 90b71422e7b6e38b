# roles.py — Role hierarchy and the per-route permission table
#
# The table below is the single place that says which roles may call which
# route. Routers bind to it with `auth.require_route("<route id>")`; the app
# refuses to start if an entry is unknown, empty or left unbound.

from typing import FrozenSet, Iterable, Set, Union

from models import UserRole

ROLE_HIERARCHY = {
    UserRole.OWNER: 4,
    UserRole.HEAD: 3,
    UserRole.LEAD: 2,
    UserRole.ACTOR: 1,
}

RoleLike = Union[UserRole, str]


def rank(role: RoleLike) -> int:
    """Numeric rank of a role; unknown roles rank 0 and satisfy nothing."""
    try:
        return ROLE_HIERARCHY.get(UserRole(role), 0)
    except ValueError:
        return 0


def satisfies(actual: RoleLike, required: RoleLike) -> bool:
    required_rank = rank(required)
    return required_rank > 0 and rank(actual) >= required_rank


def satisfies_any(actual: RoleLike, required: Iterable[RoleLike]) -> bool:
    return any(satisfies(actual, r) for r in required)


def is_top_role(role: RoleLike) -> bool:
    return rank(role) == ROLE_HIERARCHY[UserRole.OWNER]


# ============================================================
# ROUTE PERMISSION TABLE
# ============================================================

OWNER_ONLY = frozenset({UserRole.OWNER})
HEAD_UP = frozenset({UserRole.HEAD})
ANY_ROLE = frozenset({UserRole.ACTOR})

ROUTE_PERMISSIONS = {
    # Auth
    "auth.me": ANY_ROLE,
    "auth.logout": ANY_ROLE,
    # Users
    "users.me.read": ANY_ROLE,
    "users.me.update": ANY_ROLE,
    "users.me.change_password": ANY_ROLE,
    "users.read": ANY_ROLE,
    "users.team.list": ANY_ROLE,
    # Admin
    "admin.users.list": OWNER_ONLY,
    "admin.users.pending": OWNER_ONLY,
    "admin.users.approve": OWNER_ONLY,
    "admin.users.reject": OWNER_ONLY,
    "admin.users.role": OWNER_ONLY,
    "admin.users.team": OWNER_ONLY,
    "admin.users.deactivate": OWNER_ONLY,
    "admin.users.activate": OWNER_ONLY,
    "admin.audit.list": OWNER_ONLY,
    # Teams
    "teams.create": OWNER_ONLY,
    "teams.list": ANY_ROLE,
    "teams.my": ANY_ROLE,
    "teams.read": ANY_ROLE,
    "teams.update": OWNER_ONLY,
    "teams.delete": OWNER_ONLY,
    "teams.members.list": ANY_ROLE,
    "teams.members.add": HEAD_UP,
    "teams.members.remove": HEAD_UP,
    "teams.members.transfer": OWNER_ONLY,
    "teams.shares.list": ANY_ROLE,
    "teams.shares.create": HEAD_UP,
    "teams.shares.update": HEAD_UP,
    "teams.shares.delete": HEAD_UP,
    "teams.shared_tasks": ANY_ROLE,
    "teams.shared_schedules": ANY_ROLE,
    # Tasks
    "tasks.create": ANY_ROLE,
    "tasks.list": ANY_ROLE,
    "tasks.my": ANY_ROLE,
    "tasks.created": ANY_ROLE,
    "tasks.read": ANY_ROLE,
    "tasks.update": ANY_ROLE,
    "tasks.delete": ANY_ROLE,
    "tasks.comments.list": ANY_ROLE,
    "tasks.comments.add": ANY_ROLE,
    "tasks.comments.delete": ANY_ROLE,
    "tasks.history": ANY_ROLE,
    # Retrospectives
    "retrospectives.create": ANY_ROLE,
    "retrospectives.list": ANY_ROLE,
    "retrospectives.my": ANY_ROLE,
    "retrospectives.shared_with_me": ANY_ROLE,
    "retrospectives.read": ANY_ROLE,
    "retrospectives.update": ANY_ROLE,
    "retrospectives.delete": ANY_ROLE,
    "retrospectives.publish": ANY_ROLE,
    "retrospectives.share": ANY_ROLE,
    "retrospectives.shares.add": ANY_ROLE,
    "retrospectives.shares.remove": ANY_ROLE,
    # Schedules
    "schedules.create": ANY_ROLE,
    "schedules.list": ANY_ROLE,
    "schedules.my": ANY_ROLE,
    "schedules.upcoming": ANY_ROLE,
    "schedules.team": ANY_ROLE,
    "schedules.read": ANY_ROLE,
    "schedules.update": ANY_ROLE,
    "schedules.delete": ANY_ROLE,
    "schedules.toggle": ANY_ROLE,
    # Documents
    "documents.create": ANY_ROLE,
    "documents.list": ANY_ROLE,
    "documents.read": ANY_ROLE,
    "documents.update": ANY_ROLE,
    "documents.delete": ANY_ROLE,
    # Notifications
    "notifications.list": ANY_ROLE,
    "notifications.unread_count": ANY_ROLE,
    "notifications.read": ANY_ROLE,
    "notifications.read_all": ANY_ROLE,
    "notifications.delete": ANY_ROLE,
    "notifications.delete_all": ANY_ROLE,
    # WebSocket
    "ws.stats": OWNER_ONLY,
}

_bound_routes: Set[str] = set()


def required_roles(route_id: str) -> FrozenSet[UserRole]:
    """Look up a route's role set. Unknown ids fail loudly at bind time."""
    try:
        return ROUTE_PERMISSIONS[route_id]
    except KeyError:
        raise LookupError(f"Route '{route_id}' has no entry in ROUTE_PERMISSIONS") from None


def mark_bound(route_id: str) -> None:
    _bound_routes.add(route_id)


def validate_route_table() -> None:
    """Startup check: every entry non-empty, known roles only, bound by a handler."""
    problems = []
    for route_id, roles in ROUTE_PERMISSIONS.items():
        if not roles:
            problems.append(f"{route_id}: empty role set")
        for role in roles:
            if rank(role) == 0:
                problems.append(f"{route_id}: unknown role {role!r}")
        if route_id not in _bound_routes:
            problems.append(f"{route_id}: not bound by any handler")
    if problems:
        raise RuntimeError("Invalid route permission table: " + "; ".join(problems))
