"""Reviewer roles resolved from the authenticated caller."""

from __future__ import annotations

from dataclasses import dataclass

from chirisu.infra.auth import AuthenticatedUser

ROLE_ADMIN = "admin"
ROLE_MODERATOR = "moderator"


@dataclass(slots=True)
class ReviewerContext:
    actor_id: str
    roles: tuple[str, ...] = ()

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    @property
    def is_moderator(self) -> bool:
        return ROLE_MODERATOR in self.roles or self.is_admin

    @property
    def is_staff(self) -> bool:
        return self.is_moderator


def resolve_reviewer(user: AuthenticatedUser) -> ReviewerContext:
    return ReviewerContext(actor_id=str(user.id), roles=tuple(user.roles))
