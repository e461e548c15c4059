"""
cozycore.engine.progression — Role Resolver
============================================

Pure decision logic that maps a member's total XP onto the guild's level
roles.  Nothing in here touches the database or Discord: the award engine
feeds it plain :class:`RoleStep` values and acts on the returned
:class:`RoleResolution`.

Rules:

* A role *qualifies* when ``xp_required <= total_xp``.
* The target is the qualifying role with the greatest threshold.  Roles that
  share a threshold are ordered by their ``order`` column, then role id, so
  the result never depends on the order rows come back from the store.
* Moving to a role with a higher threshold than the current one is a
  promotion, lower is a demotion, and having no qualifying role while
  holding one is a role loss.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass

__all__ = [
    "RoleStep",
    "RoleResolution",
    "TransitionKind",
    "resolve_role",
    "sort_roles",
]


class TransitionKind(enum.StrEnum):
    UNCHANGED = "unchanged"
    PROMOTION = "promotion"
    DEMOTION = "demotion"
    ROLE_LOSS = "role_loss"


@dataclass(frozen=True, slots=True)
class RoleStep:
    """One XP threshold → Discord role pair."""

    role_id: str
    xp_required: int
    order: int = 0


@dataclass(frozen=True, slots=True)
class RoleResolution:
    """Outcome of :func:`resolve_role`.

    ``target`` is the role the member should hold (``None`` if nothing
    qualifies); ``previous_role_id`` echoes the input so callers can build
    notifications without threading it through separately.
    """

    target: RoleStep | None
    previous_role_id: str | None
    kind: TransitionKind

    @property
    def changed(self) -> bool:
        return self.kind is not TransitionKind.UNCHANGED

    @property
    def is_promotion(self) -> bool:
        return self.kind is TransitionKind.PROMOTION


def sort_roles(roles: Iterable[RoleStep]) -> list[RoleStep]:
    """Ascending by threshold with a deterministic tie-break."""
    return sorted(roles, key=lambda r: (r.xp_required, r.order, r.role_id))


def resolve_role(
    roles: Iterable[RoleStep],
    current_role_id: str | None,
    total_xp: int,
) -> RoleResolution:
    """Decide which level role a member with *total_xp* should hold."""
    ordered = sort_roles(roles)
    qualified = [r for r in ordered if r.xp_required <= total_xp]
    target = qualified[-1] if qualified else None

    if target is None:
        kind = TransitionKind.ROLE_LOSS if current_role_id else TransitionKind.UNCHANGED
        return RoleResolution(target=None, previous_role_id=current_role_id, kind=kind)

    if target.role_id == current_role_id:
        return RoleResolution(
            target=target, previous_role_id=current_role_id, kind=TransitionKind.UNCHANGED,
        )

    if current_role_id is None:
        return RoleResolution(
            target=target, previous_role_id=None, kind=TransitionKind.PROMOTION,
        )

    # An unknown current role (deleted from the ladder) counts as threshold 0.
    previous_xp = next(
        (r.xp_required for r in ordered if r.role_id == current_role_id), 0
    )
    kind = (
        TransitionKind.PROMOTION
        if target.xp_required > previous_xp
        else TransitionKind.DEMOTION
    )
    return RoleResolution(target=target, previous_role_id=current_role_id, kind=kind)
