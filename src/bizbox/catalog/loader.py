"""Work catalog: immutable work-item definitions loaded from JSON."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

import jsonschema

from ..errors import ConfigurationError
from ..schemas import Tier


LOGGER = logging.getLogger("bizbox.catalog")

DATA_DIR = Path(__file__).parent / "data"
DEFAULT_CATALOG_PATH = DATA_DIR / "default_catalog.json"
SCHEMA_PATH = DATA_DIR / "catalog.schema.json"


@dataclass(frozen=True)
class WorkItemDefinition:
    """One unit of generated content. Never mutated after loading."""

    id: str
    display_name: str
    section: str
    tier_membership: FrozenSet[Tier]
    depends_on: Tuple[str, ...]
    instruction_template: str
    order_index: int
    system_instructions: str = ""
    estimated_tokens: int = 0

    def included_in(self, tier: Tier) -> bool:
        return tier in self.tier_membership


@dataclass(frozen=True)
class SectionDefinition:
    name: str
    description: str = ""
    reading_guide: str = ""


@dataclass
class WorkCatalog:
    """Static list of work-item definitions plus section metadata."""

    items: List[WorkItemDefinition]
    sections_by_name: Dict[str, SectionDefinition] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._by_id = {item.id: item for item in self.items}

    def items_for_tier(self, tier: Tier) -> List[WorkItemDefinition]:
        """Items included in *tier*, ascending ``order_index``. Empty for unknown tiers."""
        selected = [item for item in self.items if item.included_in(tier)]
        return sorted(selected, key=lambda item: (item.order_index, item.id))

    def get(self, item_id: str) -> Optional[WorkItemDefinition]:
        return self._by_id.get(item_id)

    def section(self, name: str) -> SectionDefinition:
        return self.sections_by_name.get(name) or SectionDefinition(name=name)

    def sections(self) -> List[SectionDefinition]:
        """Sections in the order their first item appears in the catalog."""
        ordered: List[SectionDefinition] = []
        seen = set()
        for item in sorted(self.items, key=lambda entry: entry.order_index):
            if item.section in seen:
                continue
            seen.add(item.section)
            ordered.append(self.section(item.section))
        return ordered

    def __len__(self) -> int:
        return len(self.items)


def load_schema() -> Dict[str, Any]:
    """Load the catalog JSON schema from disk."""

    with SCHEMA_PATH.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def load_catalog(path: Optional[Path] = None) -> WorkCatalog:
    """Read, validate and build a :class:`WorkCatalog` from *path* (default: packaged catalog)."""

    source = Path(path) if path else DEFAULT_CATALOG_PATH
    try:
        with source.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read catalog {source}: {exc}") from exc

    catalog = catalog_from_dict(payload)
    LOGGER.debug("Loaded %d work items from %s", len(catalog), source)
    return catalog


def catalog_from_dict(payload: Dict[str, Any]) -> WorkCatalog:
    try:
        jsonschema.validate(instance=payload, schema=load_schema())
    except jsonschema.ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path) or "<root>"
        raise ConfigurationError(f"Catalog failed validation at {location}: {exc.message}") from exc

    sections = {
        entry["name"]: SectionDefinition(
            name=entry["name"],
            description=entry.get("description", ""),
            reading_guide=entry.get("reading_guide", ""),
        )
        for entry in payload.get("sections", [])
    }
    items = [_build_item(entry) for entry in payload["items"]]
    _check_references(items)
    return WorkCatalog(items=items, sections_by_name=sections)


def _build_item(entry: Dict[str, Any]) -> WorkItemDefinition:
    return WorkItemDefinition(
        id=entry["id"],
        display_name=entry["display_name"],
        section=entry["section"],
        tier_membership=frozenset(Tier.parse(value) for value in entry["tiers"]),
        depends_on=tuple(entry.get("depends_on", [])),
        instruction_template=entry["instruction_template"],
        order_index=int(entry["order_index"]),
        system_instructions=entry.get("system_instructions", ""),
        estimated_tokens=int(entry.get("estimated_tokens", 0)),
    )


def _check_references(items: Iterable[WorkItemDefinition]) -> None:
    items = list(items)
    ids = [item.id for item in items]
    duplicates = sorted({item_id for item_id in ids if ids.count(item_id) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate work item ids: {', '.join(duplicates)}")

    known = set(ids)
    for item in items:
        if item.id in item.depends_on:
            raise ConfigurationError(f"Work item {item.id} depends on itself")
        missing = [dep for dep in item.depends_on if dep not in known]
        if missing:
            raise ConfigurationError(f"Work item {item.id} depends on unknown items: {', '.join(missing)}")
