from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from bizbox.catalog import WorkCatalog, catalog_from_dict
from bizbox.errors import GenerationError
from bizbox.persistence import RunStore
from bizbox.sdk import Completion

ALL_TIERS = ["VALIDATION_PACK", "LAUNCH_BLUEPRINT", "TURNKEY_SYSTEM"]
BRIEF_TEXT = "Minimal geometric fox mark in teal and warm orange, flat vector, friendly and modern"


class FakeClient:
    """Deterministic generative client; fails for inputs containing any marker in ``fail_on``."""

    def __init__(self, fail_on: Iterable[str] = (), empty_on: Iterable[str] = (), brief: str = BRIEF_TEXT) -> None:
        self.fail_on = list(fail_on)
        self.empty_on = list(empty_on)
        self.brief = brief
        self.calls: List[Dict[str, Optional[str]]] = []
        self._lock = threading.Lock()

    def invoke(self, system_instructions: str, user_input: str, max_tokens: Optional[int] = None) -> Completion:
        with self._lock:
            self.calls.append({"system": system_instructions, "input": user_input, "max_tokens": max_tokens})
        if max_tokens is not None:
            return Completion(text=self.brief, tokens_used=5)
        for marker in self.fail_on:
            if marker in user_input:
                raise GenerationError(f"service unavailable for {marker}")
        for marker in self.empty_on:
            if marker in user_input:
                return Completion(text="   ", tokens_used=0)
        first_line = user_input.splitlines()[0]
        return Completion(text=f"Output for: {first_line}", tokens_used=10)

    def item_inputs(self) -> List[str]:
        return [call["input"] for call in self.calls if call["max_tokens"] is None]


def item_entry(
    item_id: str,
    order_index: int,
    depends_on: Iterable[str] = (),
    tiers: Iterable[str] = ALL_TIERS,
    section: str = "Research",
) -> Dict:
    return {
        "id": item_id,
        "display_name": item_id.replace("_", " ").title(),
        "section": section,
        "instruction_template": f"Write {item_id} for {{{{business_concept}}}}.",
        "order_index": order_index,
        "depends_on": list(depends_on),
        "tiers": list(tiers),
    }


def build_catalog(entries: Iterable[Dict], sections: Iterable[Dict] = ()) -> WorkCatalog:
    return catalog_from_dict({"items": list(entries), "sections": list(sections)})


@pytest.fixture
def store(tmp_path: Path) -> RunStore:
    return RunStore.from_url(f"sqlite:///{tmp_path / 'bizbox.sqlite'}")


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()
