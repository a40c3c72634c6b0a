"""Best-effort syntactic repair of almost-JSON text."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging

from json_repair import repair_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class JsonRepairOutcome:
    """Result of a repair pass.

    Attributes:
        repaired: Text to hand to ``json.loads``. May be empty when the input
            had nothing salvageable.
        changed: Whether the repair altered the input.
    """

    repaired: str
    changed: bool


def attempt_json_repair(raw: str) -> JsonRepairOutcome:
    """Fix trailing commas, unescaped control characters and similar slips.

    Text that already parses is returned untouched so that repair never
    rewrites valid model output.
    """
    try:
        json.loads(raw)
    except ValueError:
        pass
    else:
        return JsonRepairOutcome(repaired=raw, changed=False)

    repaired = repair_json(raw)
    if not isinstance(repaired, str):
        # Older json_repair releases may hand back objects for some inputs
        repaired = json.dumps(repaired)
    if repaired != raw:
        logger.debug("Repaired malformed JSON candidate (%d chars)", len(raw))
    return JsonRepairOutcome(repaired=repaired, changed=repaired != raw)
