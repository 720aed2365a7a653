from __future__ import annotations

from dataclasses import dataclass

from loyalty.ledger.roles import Role


@dataclass(frozen=True, slots=True)
class UserProfile:
    user_id: int
    utorid: str
    name: str
    email: str
    role: Role
    is_activated: bool
    is_suspicious: bool
    is_verified: bool
    token_version: int
    account_id: int | None
    points: int
