"""Prompt assembly for work items and side-effect helper calls."""

from __future__ import annotations

import logging
import re
from typing import Mapping, Optional, Sequence

from .catalog.loader import WorkItemDefinition
from .errors import ConfigurationError
from .persistence.records import ItemExecution


LOGGER = logging.getLogger("bizbox.prompts")

CONCISENESS_DIRECTIVE = (
    "CRITICAL: Keep responses concise and actionable. Use structured formats (bullet points, tables) "
    "where appropriate. Focus on key insights and actionable recommendations over exhaustive analysis. "
    "Deliver maximum value in minimal words."
)

CONTEXT_HEADING = "\n\n# Context from Previous Analyses\n\n"

SUBJECT_PLACEHOLDER = re.compile(r"\{\{\s*business_concept\s*\}\}")
ANY_PLACEHOLDER = re.compile(r"\{\{[^}]+\}\}")

LOGO_BRIEF_INSTRUCTIONS = """Based on this brand strategy output, create a concise image generation prompt (50-100 words) for a professional logo design.

Focus on:
- Visual style (modern, minimal, playful, corporate)
- Color palette (specific colors mentioned)
- Key symbols, icons or visual metaphors
- Mood and tone

Do not include the company name, any text, dimensions or file formats.

Return ONLY the image prompt as plain text, nothing else."""

BRIEF_SOURCE_LIMIT = 2000


def resolve_item_input(
    item: WorkItemDefinition,
    subject_text: str,
    executions: Mapping[str, ItemExecution],
    omitted: Sequence[str] = (),
) -> str:
    """
    Build the user input for *item*.

    ``executions`` maps item ids to the latest execution recorded in this run.
    Dependencies listed in ``omitted`` are outside the plan and are skipped
    silently. Failed dependencies are skipped with a log line. A dependency that
    is neither omitted nor recorded has not been attempted yet, which means the
    caller broke the plan order.
    """

    resolved = SUBJECT_PLACEHOLDER.sub(lambda _match: subject_text, item.instruction_template)

    if item.depends_on:
        blocks = []
        for dep_id in item.depends_on:
            if dep_id in omitted:
                continue
            execution = executions.get(dep_id)
            if execution is None:
                raise ConfigurationError(f"Work item {item.id} scheduled before its dependency {dep_id}")
            if not execution.succeeded:
                LOGGER.info("Omitting context from failed dependency %s for %s", dep_id, item.id)
                continue
            blocks.append(f"## {execution.display_name}\n\n{execution.output}\n\n---\n\n")
        resolved = f"{resolved}{CONTEXT_HEADING}{''.join(blocks)}"

    return ANY_PLACEHOLDER.sub(lambda _match: subject_text, resolved)


def build_system_instructions(item: WorkItemDefinition, retrieved_context: Optional[str] = None) -> str:
    parts = [part for part in (item.system_instructions.strip(), CONCISENESS_DIRECTIVE) if part]
    if retrieved_context:
        parts.append(retrieved_context.strip())
    return "\n\n".join(parts)


def build_logo_brief_input(brand_output: str) -> str:
    return f"{LOGO_BRIEF_INSTRUCTIONS}\n\nBrand Strategy Output:\n{brand_output[:BRIEF_SOURCE_LIMIT]}"
