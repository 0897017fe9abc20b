from __future__ import annotations

from typing import Protocol, runtime_checkable

from fitslot.app.domain.models import STUDIO_ACCESS_PLANS, Studio, User, normalize_plan


@runtime_checkable
class EntitlementChecker(Protocol):
    """Answers whether a user's plan lets them book studio slots directly."""

    def can_book_studio(self, user: User, studio: Studio) -> bool: ...


class PlanEntitlementChecker:
    """Plan-based rule: only studio-access plans book directly.

    Digital-only members (and users without a plan) go through the paid
    drop-in flow instead.
    """

    def __init__(self, allowed_plans=STUDIO_ACCESS_PLANS) -> None:
        self.allowed_plans = frozenset(allowed_plans)

    def can_book_studio(self, user: User, studio: Studio) -> bool:
        return normalize_plan(user.plan) in self.allowed_plans


__all__ = ["EntitlementChecker", "PlanEntitlementChecker"]
