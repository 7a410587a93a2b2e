"""Partition a candidate pool into region tiers."""

from __future__ import annotations

from collections.abc import Sequence

from smart_pilot.config.regions import DEFAULT_REGION_RULES, RegionRule


class RegionClassifier:
    """Applies an ordered region table to a node pool.

    The table is fixed at construction; its order is the fallback priority.
    """

    def __init__(self, rules: Sequence[RegionRule] = DEFAULT_REGION_RULES) -> None:
        self._rules = tuple(rules)

    def __len__(self) -> int:
        return len(self._rules)

    def label(self, index: int) -> str:
        return self._rules[index].label

    def pool_for(self, index: int, pool: Sequence[str]) -> list[str]:
        """Members of ``pool`` matching region ``index``, in pool order."""
        rule = self._rules[index]
        return [name for name in pool if rule.matches(name)]

    def classify(self, pool: Sequence[str]) -> list[tuple[str, list[str]]]:
        """Return ``(label, filtered_pool)`` for every region, in priority order."""
        return [(rule.label, [name for name in pool if rule.matches(name)]) for rule in self._rules]
