"""Plan registry: the static table of per-tier, per-resource quotas.

The registry is an immutable value handed to the components that need it.
Tests and alternate deployments build their own with :func:`build_registry`.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from quota_engine.core.enums import PlanTier, ResourceKind
from quota_engine.core.exceptions import UnknownPlanTier, UnknownResourceKind


FREE_PLAN_ITEM_LIMIT = 3


class Quota(BaseModel):
    """A non-negative cap, or unlimited when ``limit`` is ``None``."""

    limit: Optional[int] = Field(default=None, ge=0)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def capped(cls, limit: int) -> "Quota":
        return cls(limit=limit)

    @property
    def unlimited(self) -> bool:
        return self.limit is None

    def admits(self, current_count: int) -> bool:
        return self.unlimited or current_count < self.limit

    def __str__(self) -> str:
        return "unlimited" if self.unlimited else str(self.limit)


UNLIMITED = Quota()


@dataclass(frozen=True)
class PlanDefinition:
    """Immutable mapping of every resource kind to its quota for one tier."""

    tier: PlanTier
    quotas: Mapping[ResourceKind, Quota]

    def quota_for(self, kind: ResourceKind) -> Quota:
        try:
            return self.quotas[ResourceKind(kind)]
        except (KeyError, ValueError) as exc:
            raise UnknownResourceKind(
                f"Plan '{self.tier.value}' defines no quota for {kind!r}"
            ) from exc


class PlanRegistry:
    """Lookup of :class:`PlanDefinition` by tier."""

    def __init__(self, definitions: Mapping[PlanTier, PlanDefinition]) -> None:
        self._definitions = MappingProxyType(dict(definitions))

    def definition(self, tier: PlanTier) -> PlanDefinition:
        try:
            return self._definitions[PlanTier(tier)]
        except (KeyError, ValueError) as exc:
            raise UnknownPlanTier(f"No plan definition for tier {tier!r}") from exc

    def quota_for(self, tier: PlanTier, kind: ResourceKind) -> Quota:
        return self.definition(tier).quota_for(kind)

    def tiers(self) -> list[PlanTier]:
        return list(self._definitions)


def build_registry(
    tiers: Mapping[PlanTier, Mapping[ResourceKind, Optional[int]]]
) -> PlanRegistry:
    """Build a registry from plain ``{tier: {kind: limit_or_None}}`` data.

    Every tier must cover every :class:`ResourceKind`.
    """

    definitions = {}
    for tier, limits in tiers.items():
        missing = set(ResourceKind) - {ResourceKind(kind) for kind in limits}
        if missing:
            names = ", ".join(sorted(kind.value for kind in missing))
            raise UnknownResourceKind(f"Plan '{PlanTier(tier).value}' is missing {names}")
        quotas = {ResourceKind(kind): Quota(limit=limit) for kind, limit in limits.items()}
        definitions[PlanTier(tier)] = PlanDefinition(
            tier=PlanTier(tier), quotas=MappingProxyType(quotas)
        )
    return PlanRegistry(definitions)


DEFAULT_PLAN_REGISTRY = build_registry(
    {
        PlanTier.FREE: {kind: FREE_PLAN_ITEM_LIMIT for kind in ResourceKind},
        PlanTier.PRO: {kind: None for kind in ResourceKind},
    }
)
