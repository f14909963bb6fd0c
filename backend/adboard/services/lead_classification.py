"""CRM tag -> lead status classification.

WHAT:
    Maps the tag set of a CRM opportunity (contact tags plus relation tags)
    to a lead status using an ordered rule list; first match wins.

WHY:
    The CRM has no status field the board can trust. Stages are expressed
    as tags, several of which can coexist on one contact (e.g. `day3am` and
    `appt_booked`), so the most advanced / most decisive tag has to win.
    Only leads tagged `facebook lead` belong to the ad board.

REFERENCES:
    - adboard/services/lead_status_sync_service.py (caller)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, NamedTuple, Optional

from adboard.models import LeadStatusEnum


SOURCE_TAG = "facebook lead"
NEW_LEAD_TAG = "new_lead"

UNQUALIFIED_TAGS = frozenset({
    "dq - bad phone number",
    "dq - job too small",
    "dq - looking for job",
    "dq - no longer interested",
    "dq - out of area",
    "dq - said didn't fill out a form",
    "dq - service not offered",
    "dq - services we dont offer",
})

ESTIMATE_SET_TAGS = frozenset({
    "appt_completed",
    "appt_cancelled",
    "job_won",
    "job_lost",
    "appt_booked",
})

IN_PROGRESS_TAGS = frozenset(
    f"day{day}{half}" for day in range(1, 15) for half in ("am", "pm")
)

ALLOWED_TAGS = UNQUALIFIED_TAGS | ESTIMATE_SET_TAGS | IN_PROGRESS_TAGS | {SOURCE_TAG, NEW_LEAD_TAG}


class Classification(NamedTuple):
    status: LeadStatusEnum
    unqualified_reason: Optional[str] = None


@dataclass(frozen=True)
class TagRule:
    """Any tag of `tags` present -> `status`; `requires` must all be present too."""
    tags: FrozenSet[str]
    status: LeadStatusEnum
    captures_reason: bool = False
    requires: FrozenSet[str] = frozenset()

    def match(self, present: FrozenSet[str]) -> Optional[Classification]:
        if not self.requires <= present:
            return None
        hits = sorted(self.tags & present)
        if not hits:
            return None
        return Classification(self.status, hits[0] if self.captures_reason else None)


RULES: List[TagRule] = [
    TagRule(UNQUALIFIED_TAGS, LeadStatusEnum.unqualified, captures_reason=True),
    TagRule(ESTIMATE_SET_TAGS, LeadStatusEnum.estimate_set),
    TagRule(IN_PROGRESS_TAGS, LeadStatusEnum.in_progress),
    TagRule(frozenset({NEW_LEAD_TAG}), LeadStatusEnum.new, requires=frozenset({SOURCE_TAG})),
]


def normalize_tags(tags: Iterable[Any]) -> FrozenSet[str]:
    """Lowercase, trim and keep only known tags."""
    normalized = (str(tag).strip().lower() for tag in tags if tag is not None)
    return frozenset(tag for tag in normalized if tag in ALLOWED_TAGS)


def classify(tags: Iterable[Any]) -> Optional[Classification]:
    """Status for a tag set, or None when it is not an ad lead / matches no rule.

    Example:
        >>> classify(["dq - out of area", "facebook lead"])
        Classification(status=<LeadStatusEnum.unqualified: 'unqualified'>, unqualified_reason='dq - out of area')
    """
    present = normalize_tags(tags)
    if SOURCE_TAG not in present:
        return None

    for rule in RULES:
        result = rule.match(present)
        if result is not None:
            return result
    return None


def collect_tags(opportunity: Dict[str, Any]) -> List[str]:
    """Contact tags plus every relation's tags of a CRM opportunity."""
    collected: List[str] = []
    contact_tags = (opportunity.get("contact") or {}).get("tags")
    if isinstance(contact_tags, list):
        collected.extend(contact_tags)
    for relation in opportunity.get("relations") or []:
        if isinstance(relation, dict) and isinstance(relation.get("tags"), list):
            collected.extend(relation["tags"])
    return collected
