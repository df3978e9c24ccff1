"""Pure helpers for matching a typed sprint against Agile API sprints."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from .jira_models import SprintCandidate, SprintDates
from .jql import looks_like_project_key

# Sprint Report sections that list the sprint's members. Kept explicit so
# a schema change shows up as a failing test rather than silent drift.
MEMBERSHIP_FIELDS = (
    "completedIssues",
    "issuesNotCompletedInCurrentSprint",
    "incompletedIssues",
    "puntedIssues",
    "issuesCompletedInAnotherSprint",
    "issueKeysAddedDuringSprint",
)

_NUMBER = re.compile(r"\d+")
_WHITESPACE = re.compile(r"\s+")
_OFFSET_NO_COLON = re.compile(r"([+-]\d{2})(\d{2})$")


@dataclass
class MatchResult:
    """Sprint candidates split by how they matched the typed text."""

    exact: List[SprintCandidate] = field(default_factory=list)
    numeric: List[SprintCandidate] = field(default_factory=list)

    @property
    def preferred(self) -> List[SprintCandidate]:
        """Exact matches when there are any, numeric matches otherwise."""
        return list(self.exact) if self.exact else list(self.numeric)

    def __bool__(self) -> bool:
        return bool(self.exact or self.numeric)


def normalize_name(text: Optional[str]) -> str:
    """Case-fold and collapse whitespace."""
    return _WHITESPACE.sub(" ", (text or "").strip()).casefold()


def trailing_number(text: Optional[str]) -> Optional[int]:
    """The last integer in ``text`` (``"Sprint 73"`` -> 73)."""
    numbers = _NUMBER.findall(text or "")
    return int(numbers[-1]) if numbers else None


def embedded_numbers(text: Optional[str]) -> List[int]:
    """All integers in ``text`` as whole tokens."""
    return [int(n) for n in _NUMBER.findall(text or "")]


def _strip_project_prefix(name: str, project: str) -> str:
    pattern = re.compile(rf"^{re.escape(project)}[\s\-_:]*", re.IGNORECASE)
    return pattern.sub("", name, count=1)


def is_exact_match(
    name: str,
    sprint_text: str,
    project: Optional[str] = None,
    require_project_key: bool = False,
) -> bool:
    """Case-insensitive full-name equality.

    A name carrying the project key in front (``"AIRPMD Sprint 73"``) equals
    the bare text (``"Sprint 73"``). With ``require_project_key`` and a
    key-shaped project, the name must mention the key.
    """
    wanted = normalize_name(sprint_text)
    if not wanted or not name:
        return False

    project = (project or "").strip()
    key_like = looks_like_project_key(project)

    if require_project_key and key_like and project.casefold() not in name.casefold():
        return False

    if normalize_name(name) == wanted:
        return True

    if project:
        return normalize_name(_strip_project_prefix(name.strip(), project)) == wanted

    return False


def is_numeric_match(name: str, wanted: Optional[int]) -> bool:
    """Whether an integer token in ``name`` equals ``wanted``."""
    if wanted is None:
        return False
    return wanted in embedded_numbers(name)


def is_loose_match(name: str, sprint_text: str) -> bool:
    """Equality, containment, or equal trailing number."""
    wanted = normalize_name(sprint_text)
    current = normalize_name(name)
    if not wanted or not current:
        return False

    if current == wanted or wanted in current:
        return True

    number = trailing_number(sprint_text)
    return number is not None and trailing_number(name) == number


def partition_candidates(
    candidates: Iterable[SprintCandidate],
    sprint_text: str,
    project: Optional[str] = None,
    require_project_key: bool = False,
) -> MatchResult:
    """Split candidates into exact and numeric matches, keeping scan order."""
    result = MatchResult()
    wanted_number = trailing_number(sprint_text)

    for candidate in candidates:
        if is_exact_match(candidate.name, sprint_text, project, require_project_key):
            result.exact.append(candidate)
        elif is_numeric_match(candidate.name, wanted_number):
            result.numeric.append(candidate)

    return result


def first_loose_match(
    candidates: Iterable[SprintCandidate], sprint_text: str
) -> Optional[SprintCandidate]:
    """First candidate whose name loosely matches the text."""
    for candidate in candidates:
        if is_loose_match(candidate.name, sprint_text):
            return candidate
    return None


def _sort_timestamp(value: Optional[datetime]) -> float:
    if value is None:
        return float("-inf")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def most_recent_candidate(
    candidates: Iterable[SprintCandidate],
) -> Optional[SprintCandidate]:
    """Candidate with the latest start date.

    Missing start dates sort oldest; equal dates go to the lowest sprint ID.
    """
    pool = list(candidates)
    if not pool:
        return None
    return max(pool, key=lambda c: (_sort_timestamp(c.start_date), -c.sprint_id))


def _keys_from_value(value: Any) -> List[str]:
    keys: List[str] = []

    if isinstance(value, dict):
        # issueKeysAddedDuringSprint is a {"KEY-1": true} map
        candidates = list(value.keys())
    elif isinstance(value, list):
        candidates = []
        for item in value:
            if isinstance(item, dict):
                candidates.append(item.get("key"))
            else:
                candidates.append(item)
    else:
        return keys

    for key in candidates:
        if isinstance(key, str) and key.strip():
            keys.append(key.strip())

    return keys


def extract_sprint_report_keys(payload: Any) -> FrozenSet[str]:
    """Issue keys listed in a Sprint Report response.

    Sections are read from ``contents`` and from the top level, so both the
    full response and an unwrapped ``contents`` object are accepted.
    """
    if not isinstance(payload, dict):
        return frozenset()

    sections: List[Dict[str, Any]] = [payload]
    contents = payload.get("contents")
    if isinstance(contents, dict):
        sections.insert(0, contents)

    keys = set()
    for section in sections:
        for field_name in MEMBERSHIP_FIELDS:
            keys.update(_keys_from_value(section.get(field_name)))

    return frozenset(keys)


def parse_jira_datetime(value: Any) -> Optional[datetime]:
    """Parse Jira's ISO-8601 timestamps; ``None`` for anything else."""
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    # Jira Server writes offsets as +0300
    text = _OFFSET_NO_COLON.sub(r"\1:\2", text)

    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def read_sprint_dates(sprint: Any) -> SprintDates:
    """Start/end from a sprint object.

    ``activatedDate`` stands in for a missing start and ``completeDate``
    for a missing end.
    """
    if not isinstance(sprint, dict):
        return SprintDates()

    start = parse_jira_datetime(sprint.get("startDate"))
    end = parse_jira_datetime(sprint.get("endDate"))

    if start is None:
        start = parse_jira_datetime(sprint.get("activatedDate"))
    if end is None:
        end = parse_jira_datetime(sprint.get("completeDate"))

    return SprintDates(start=start, end=end)


def candidate_from_json(board_id: int, sprint: Any) -> Optional[SprintCandidate]:
    """Build a candidate from an Agile API sprint entry; ``None`` if unusable."""
    if not isinstance(sprint, dict):
        return None

    name = sprint.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    try:
        sprint_id = int(sprint["id"])
    except (KeyError, TypeError, ValueError):
        return None

    dates = read_sprint_dates(sprint)
    return SprintCandidate(
        board_id=board_id,
        sprint_id=sprint_id,
        name=name,
        start_date=dates.start,
        end_date=dates.end,
    )
