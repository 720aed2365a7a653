"""Role hierarchy and the authorization questions asked by every ledger operation."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from loyalty.ledger.errors import AuthorizationError, ValidationError


class Role(str, Enum):
    REGULAR = "regular"
    CASHIER = "cashier"
    MANAGER = "manager"
    SUPERUSER = "superuser"


ROLE_RANKS: dict[Role, int] = {
    Role.REGULAR: 1,
    Role.CASHIER: 2,
    Role.MANAGER: 3,
    Role.SUPERUSER: 4,
}


@dataclass(frozen=True, slots=True)
class Actor:
    user_id: int
    role: Role


def parse_role(value: str | Role) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"unknown role: {value!r}") from None


def rank(role: Role) -> int:
    return ROLE_RANKS[role]


def effective_role(roles: Iterable[str | Role]) -> Role:
    """Highest of a user's assigned roles; users without roles are regular."""
    resolved = [parse_role(role) for role in roles]
    if not resolved:
        return Role.REGULAR
    return max(resolved, key=rank)


def can_view(actor: Role, target: Role) -> bool:
    if actor is Role.SUPERUSER:
        return True
    return rank(actor) >= rank(target)


def can_modify(actor: Role, target: Role) -> bool:
    if actor is Role.SUPERUSER:
        return True
    return rank(actor) > rank(target)


def assignable_roles(actor: Role) -> frozenset[Role]:
    if actor is Role.SUPERUSER:
        return frozenset(Role)
    if actor is Role.MANAGER:
        return frozenset({Role.REGULAR, Role.CASHIER})
    return frozenset({Role.REGULAR})


def require_role(actor: Role, minimum: Role) -> None:
    if rank(actor) < rank(minimum):
        raise AuthorizationError(
            f"{actor.value} role cannot perform an action that requires {minimum.value}"
        )


def is_at_least(actor: Role, minimum: Role) -> bool:
    return rank(actor) >= rank(minimum)
