"""Region tier models and YAML loader.

The region table is an ordered list of (label, patterns). A node name
belongs to a region when it contains any of the region's patterns,
compared case-insensitively. Table order is the fallback priority.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class RegionRule(BaseModel):
    """One region tier: a label and the literal name fragments that identify it."""

    model_config = {"frozen": True}

    label: str = Field(min_length=1)
    patterns: tuple[str, ...] = Field(min_length=1)

    def matches(self, node_name: str) -> bool:
        name = node_name.casefold()
        return any(pattern.casefold() in name for pattern in self.patterns)


DEFAULT_REGION_RULES: tuple[RegionRule, ...] = (
    RegionRule(label="Hong Kong", patterns=("HK", "Hong Kong", "香港")),
    RegionRule(label="Japan", patterns=("JP", "Japan", "日本")),
    RegionRule(label="USA", patterns=("US", "USA", "United States", "美国")),
)


def load_region_rules(yaml_path: str | Path | None) -> tuple[RegionRule, ...]:
    """Parse a region table YAML file into ordered RegionRule objects.

    Expected shape::

        regions:
          - label: Singapore
            patterns: [SG, Singapore, 新加坡]

    Returns the built-in table when no path is given, the file is missing or
    unparseable, or no entry is valid.
    """
    if yaml_path is None:
        return DEFAULT_REGION_RULES

    path = Path(yaml_path)
    if not path.exists():
        logger.warning("Region table not found at %s — using built-in regions", path)
        return DEFAULT_REGION_RULES

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse region table YAML at %s: %s", path, exc)
        return DEFAULT_REGION_RULES

    if not isinstance(raw, dict) or not isinstance(raw.get("regions"), list):
        logger.warning("Region table YAML missing 'regions' list — using built-in regions")
        return DEFAULT_REGION_RULES

    rules: list[RegionRule] = []
    for position, entry in enumerate(raw["regions"]):
        try:
            rules.append(RegionRule.model_validate(entry))
        except Exception as exc:
            logger.error("Invalid region entry #%d: %s — skipping", position, exc)

    if not rules:
        logger.warning("Region table at %s has no valid entries — using built-in regions", path)
        return DEFAULT_REGION_RULES

    logger.info("Loaded %d region tiers from %s", len(rules), path)
    return tuple(rules)
