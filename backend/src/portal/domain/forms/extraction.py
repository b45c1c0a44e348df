"""Common-field extraction from heterogeneous form payloads.

Each variant stores the same concepts under different field names
(projectTitle vs paperTitle vs sttpTitle, studentName vs students[0].name).
An Extractor resolves them through an ordered list of field paths and falls
back to fixed defaults, so every projection carries non-null common fields.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

from .variants import FormStatus, parse_status

DEFAULT_TOPIC = "Untitled Project"
DEFAULT_TEXT = "N/A"

TOPIC_FIELDS = ("projectTitle", "paperTitle", "topic")
NAME_FIELDS = ("studentName", "applicantName", "students.0.name", "studentDetails.0.studentName")
BRANCH_FIELDS = ("branch", "department", "students.0.branch", "studentDetails.0.branch")
SUBMITTED_FIELDS = ("createdAt", "submittedAt")


@dataclass(frozen=True)
class CommonFields:
    """Normalized fields shared by every variant."""
    topic: str
    applicant_name: str
    branch: str
    submitted_at: datetime
    status: FormStatus


def lookup(raw: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path ("students.0.name") inside nested dicts/lists.

    Returns None when any step is missing.
    """
    current: Any = raw
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def first_text(raw: Mapping[str, Any], paths: Sequence[str]) -> Optional[str]:
    """First non-blank string value among the given paths."""
    for path in paths:
        value = lookup(raw, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return None


def parse_datetime(value: Any) -> Optional[datetime]:
    """Accept datetimes, ISO-8601 strings and {"$date": ...} wrappers."""
    if isinstance(value, Mapping):
        value = value.get("$date")
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


Extractor = Callable[..., CommonFields]


def make_extractor(
    topic_fields: Sequence[str] = TOPIC_FIELDS,
    name_fields: Sequence[str] = NAME_FIELDS,
    branch_fields: Sequence[str] = BRANCH_FIELDS,
) -> Extractor:
    """Build a pure extraction function for one variant.

    The returned function takes the raw record (payload plus createdAt and
    status) and an optional branch hint from the caller; the hint wins over
    stored branch fields.
    """

    def extract(raw: Mapping[str, Any], branch_hint: Optional[str] = None) -> CommonFields:
        submitted_at = None
        for path in SUBMITTED_FIELDS:
            submitted_at = parse_datetime(lookup(raw, path))
            if submitted_at is not None:
                break

        branch = branch_hint.strip() if branch_hint and branch_hint.strip() else None

        return CommonFields(
            topic=first_text(raw, topic_fields) or DEFAULT_TOPIC,
            applicant_name=first_text(raw, name_fields) or DEFAULT_TEXT,
            branch=branch or first_text(raw, branch_fields) or DEFAULT_TEXT,
            submitted_at=submitted_at or datetime.now(timezone.utc),
            status=parse_status(lookup(raw, "status")) or FormStatus.PENDING,
        )

    return extract
