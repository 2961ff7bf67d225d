"""
Translation of internal vocabulary into provider vocabulary.

StageMapping is a lookup table plus a default: unknown values map to the
default and never raise. Keys are normalized (lower case, whitespace and
hyphens turned into underscores) so "Phone Screen", "phone-screen" and
"PHONE_SCREEN" are the same stage.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

from ..schemas.record_schemas import CandidateRecord, InterviewRecord

_SEPARATORS = re.compile(r"[\s-]+")


def normalize(value: Optional[str]) -> str:
    return _SEPARATORS.sub("_", (value or "").strip().lower())


class StageMapping:
    """Case-insensitive lookup table with a default fallback."""

    def __init__(self, table: Dict[str, str], default: str, normalize_keys: bool = True):
        self.default = default
        self.normalize_keys = normalize_keys
        self._table = {self._key(k): v for k, v in table.items()}

    def _key(self, value: Optional[str]) -> str:
        return normalize(value) if self.normalize_keys else (value or "")

    def map(self, value: Optional[str]) -> str:
        if not value:
            return self.default
        return self._table.get(self._key(value), self.default)

    __call__ = map

    def __contains__(self, value: str) -> bool:
        return self._key(value) in self._table

    @classmethod
    def from_groups(cls, groups: Iterable[Tuple[Iterable[str], str]], default: str) -> "StageMapping":
        """Build a mapping from (source stages, target) groups."""
        table = {}
        for sources, target in groups:
            for source in sources:
                table[source] = target
        return cls(table, default)


HUBSPOT_LEAD_STATUS = StageMapping.from_groups(
    [
        (["applied", "new", "sourced"], "NEW"),
        (["screening", "phone_screen"], "OPEN"),
        (["interview", "technical", "onsite"], "IN_PROGRESS"),
        (["offer", "offer_extended", "negotiation"], "QUALIFIED"),
        (["hired", "accepted"], "CUSTOMER"),
        (["rejected", "declined", "withdrawn", "no_show"], "BAD_TIMING"),
    ],
    default="NEW",
)

HUBSPOT_MEETING_OUTCOME = StageMapping(
    {
        "SCHEDULED": "SCHEDULED",
        "RESCHEDULED": "RESCHEDULED",
        "COMPLETED": "COMPLETED",
        "CANCELLED": "CANCELED",
        "NO_SHOW": "NO_SHOW",
    },
    default="SCHEDULED",
)

WORKDAY_RECRUITING_STAGE = StageMapping.from_groups(
    [
        (["applied", "new", "sourced", "application"], "Application"),
        (["screening", "phone_screen", "recruiter_review", "screen"], "Screen"),
        (["interview", "technical", "onsite", "panel"], "Interview"),
        (["offer", "offer_extended", "negotiation"], "Offer"),
        (["hired", "accepted", "onboarding"], "Hire"),
        (["rejected", "declined", "withdrawn", "no_show"], "Reject"),
    ],
    default="Application",
)

WORKDAY_INTERVIEW_STATUS = StageMapping(
    {
        "SCHEDULED": "Scheduled",
        "RESCHEDULED": "Rescheduled",
        "IN_PROGRESS": "In Progress",
        "COMPLETED": "Completed",
        "CANCELLED": "Cancelled",
        "NO_SHOW": "No Show",
    },
    default="Scheduled",
)

GREENHOUSE_STAGE = StageMapping.from_groups(
    [
        (["applied", "new", "sourced"], "Application Review"),
        (["screening", "phone_screen"], "Preliminary Phone Screen"),
        (["interview", "technical"], "Face to Face"),
        (["onsite"], "Onsite Interview"),
        (["offer", "offer_extended", "negotiation"], "Offer"),
        (["hired", "accepted"], "Hired"),
        (["rejected", "declined", "withdrawn", "no_show"], "Rejected"),
    ],
    default="Application Review",
)

LEVER_STAGE = StageMapping.from_groups(
    [
        (["applied", "new", "sourced"], "New applicant"),
        (["screening", "phone_screen"], "Phone screen"),
        (["interview", "technical", "onsite"], "On-site interview"),
        (["offer", "offer_extended", "negotiation"], "Offer"),
        (["hired", "accepted"], "Hired"),
        (["rejected", "declined", "withdrawn", "no_show"], "Archived"),
    ],
    default="New applicant",
)


# ==================== SHARED FORMATTING ====================


def split_name(full_name: Optional[str]) -> Tuple[str, str]:
    """
    Split a display name into (first, last).

    An empty name gives ("Unknown", ""); a single word has an empty last name.
    """
    parts = (full_name or "").split()
    if not parts:
        return "Unknown", ""
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], " ".join(parts[1:])


def candidate_name(candidate: Optional[CandidateRecord]) -> str:
    return (candidate.name if candidate else "") or "Candidate"


def format_interview_title(interview: InterviewRecord) -> str:
    stage = f" - {interview.stage}" if interview.stage else ""
    return f"Interview: {candidate_name(interview.candidate)}{stage}"


def format_interview_body(interview: InterviewRecord, notes_inline: bool = False) -> str:
    """
    Plain-text description of an interview.

    Args:
        interview: Interview to describe
        notes_inline: Put notes on a single "Notes:" line instead of a block
    """
    lines: List[str] = ["Interview details"]
    if interview.stage:
        lines.append(f"Stage: {interview.stage}")
    lines.append(f"Status: {interview.status}")
    if interview.interviewer_names:
        lines.append(f"Interviewers: {', '.join(interview.interviewer_names)}")
    if interview.notes:
        if notes_inline:
            lines.append(f"Notes: {interview.notes}")
        else:
            lines.append(f"\nNotes:\n{interview.notes}")
    return "\n".join(lines)


def format_interview_note(interview: InterviewRecord) -> str:
    """Note text used by providers that record interviews as candidate notes."""
    lines = [
        f"Interview Scheduled: {interview.stage or 'Interview'}",
        f"Date: {interview.date.strftime('%Y-%m-%d %H:%M')} UTC",
        f"Duration: {interview.duration_mins} minutes",
    ]
    if interview.interviewer_names:
        lines.append(f"Interviewers: {', '.join(interview.interviewer_names)}")
    if interview.notes:
        lines.append(f"Notes: {interview.notes}")
    return "\n".join(lines)
