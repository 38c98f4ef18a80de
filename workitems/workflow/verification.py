"""
Verification gate.

An entity that requires verification may only complete once its
Verification section lists at least one acceptance criterion and every
criterion has passed. The section content is JSON:

    [{"criteria": "Unit tests pass", "pass": true}, ...]

A missing section is treated exactly like a failing one.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from workitems.lib.constants import VERIFICATION_SECTION_TITLE
from workitems.lib.types import Section, WorkItem
from workitems.lib.validate import ValidationError, validate, validate_json
from workitems.store.base import EntityStore

logger = logging.getLogger(__name__)

EXPECTED_FORMAT = '[{"criteria": "description", "pass": true/false}, ...]'


@dataclass
class Criterion:
    criteria: str
    passed: bool


@dataclass
class GateResult:
    passed: bool
    reason: Optional[str] = None
    criteria: list[Criterion] = field(default_factory=list)
    failing_criteria: list[str] = field(default_factory=list)


def is_verification_section(section: Section) -> bool:
    return section.title.strip().lower() == VERIFICATION_SECTION_TITLE.lower()


def parse_criteria(content: str) -> list[Criterion]:
    """Parse Verification section content.

    Raises:
        ValidationError: if the content is not JSON or has the wrong shape
    """
    return _to_criteria(validate_json(content, "verification"))


def _to_criteria(data: list) -> list[Criterion]:
    return [Criterion(entry["criteria"], entry["pass"]) for entry in data]


def evaluate_sections(sections: list[Section], entity_label: str) -> GateResult:
    """Run the gate over an entity's sections.

    Every section titled Verification (any case) must hold at least one
    criterion and all criteria must pass.
    """
    blocks = [s for s in sections if is_verification_section(s)]
    if not blocks:
        return GateResult(
            False,
            f"No section titled 'Verification' found on this {entity_label}. "
            "Add a Verification section with JSON acceptance criteria.",
        )

    criteria: list[Criterion] = []
    for block in blocks:
        if not block.content.strip():
            return GateResult(
                False,
                "Verification section exists but has no content. "
                f"Define acceptance criteria as JSON: {EXPECTED_FORMAT}",
            )
        try:
            data = json.loads(block.content)
        except json.JSONDecodeError as e:
            return GateResult(
                False,
                f"Verification section content is not valid JSON ({e}). "
                f"Expected format: {EXPECTED_FORMAT}",
            )
        try:
            validate(data, "verification")
        except ValidationError as e:
            return GateResult(
                False,
                f"Verification section does not match the expected format ({e.message} at {e.path}). "
                f"Expected format: {EXPECTED_FORMAT}",
            )
        parsed = _to_criteria(data)
        if not parsed:
            return GateResult(
                False,
                "Verification section contains no criteria. "
                'Add at least one: [{"criteria": "description", "pass": false}]',
            )
        criteria.extend(parsed)

    failing = [c.criteria for c in criteria if not c.passed]
    if failing:
        return GateResult(
            False,
            f"{len(failing)} of {len(criteria)} acceptance criteria have not passed: "
            + ", ".join(failing),
            criteria,
            failing,
        )
    return GateResult(True, None, criteria)


class VerificationGate:
    """Reads an entity's sections from the store and applies the gate."""

    def __init__(self, store: EntityStore):
        self.store = store

    def evaluate(self, item: WorkItem) -> GateResult:
        """
        Raises:
            PersistenceError: on a store failure
        """
        sections = self.store.sections(item.entity_type, item.id).unwrap() or []
        result = evaluate_sections(sections, item.entity_type.value)
        if not result.passed:
            logger.info(f"[GATE] {item.entity_type.value} {item.id}: {result.reason}")
        return result
