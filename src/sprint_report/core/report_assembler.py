"""Status and type tallies for the sprint report, plus its narrative text.

Everything here is a pure projection of an issue list: no I/O and no
state, so a report can be recomputed as often as needed.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..integrations.jira_models import Issue, SprintDates

REPORT_ISSUE_TYPES = ("Bug", "Improvement", "Story")

DEFAULT_TEST_ENVIRONMENT = "Proven Test and Pre-production"

# Cell fills (RGB hex, no leading #)
COLOR_CLOSED = "92D050"
COLOR_CANCELLED = "1E90FF"
COLOR_BLOCKED = "C9C9C9"
COLOR_OTHER = "FFFF00"
COLOR_HEADER = "A6A6A6"


class StatusBucket(Enum):
    """Reporting bucket of a workflow status."""

    OPEN = "Open"
    CLOSED = "Closed"
    CANCELLED = "Cancelled"
    IN_PROGRESS = "In Progress"
    IN_QA = "In Q&A"
    BLOCKED = "Blocked"
    DEV_COMPLETED = "Dev Completed"


_STATUS_SYNONYMS: Dict[str, StatusBucket] = {
    "closed": StatusBucket.CLOSED,
    "done": StatusBucket.CLOSED,
    "cancelled": StatusBucket.CANCELLED,
    "canceled": StatusBucket.CANCELLED,
    "false positive approval": StatusBucket.CANCELLED,
    "in progress": StatusBucket.IN_PROGRESS,
    "in qa": StatusBucket.IN_QA,
    "in q&a": StatusBucket.IN_QA,
    "blocked": StatusBucket.BLOCKED,
    "dev completed": StatusBucket.DEV_COMPLETED,
}


def classify_status(status: Optional[str]) -> StatusBucket:
    """Map a status name to its bucket; unknown names land in ``OPEN``."""
    normalized = " ".join((status or "").split()).casefold()
    return _STATUS_SYNONYMS.get(normalized, StatusBucket.OPEN)


def status_color(status: Optional[str]) -> str:
    """Fill color of a status cell."""
    bucket = classify_status(status)
    if bucket is StatusBucket.CLOSED:
        return COLOR_CLOSED
    if bucket is StatusBucket.CANCELLED:
        return COLOR_CANCELLED
    if bucket is StatusBucket.BLOCKED:
        return COLOR_BLOCKED
    return COLOR_OTHER


@dataclass(frozen=True)
class StatusCounts:
    """Issue counts per status bucket."""

    open: int = 0
    closed: int = 0
    cancelled: int = 0
    in_progress: int = 0
    in_qa: int = 0
    blocked: int = 0
    dev_completed: int = 0

    @property
    def total(self) -> int:
        return (
            self.open
            + self.closed
            + self.cancelled
            + self.in_progress
            + self.in_qa
            + self.blocked
            + self.dev_completed
        )

    def get(self, bucket: StatusBucket) -> int:
        return getattr(self, bucket.name.lower())

    def as_dict(self) -> Dict[str, int]:
        return {bucket.value: self.get(bucket) for bucket in StatusBucket}


def _same_type(issue: Issue, issue_type: str) -> bool:
    return issue.type.strip().casefold() == issue_type.strip().casefold()


def count_statuses(
    issues: Iterable[Issue], issue_type: Optional[str] = None
) -> StatusCounts:
    """Tally issues per bucket, optionally only those of ``issue_type``."""
    tally = {bucket: 0 for bucket in StatusBucket}
    for issue in issues:
        if issue_type is not None and not _same_type(issue, issue_type):
            continue
        tally[classify_status(issue.status)] += 1

    return StatusCounts(**{bucket.name.lower(): n for bucket, n in tally.items()})


def dedupe_issues(issues: Iterable[Issue]) -> List[Issue]:
    """Drop repeated keys, keeping the first occurrence."""
    seen = set()
    unique = []
    for issue in issues:
        if issue.key in seen:
            continue
        seen.add(issue.key)
        unique.append(issue)
    return unique


def filter_report_issues(
    issues: Iterable[Issue], allowed_types: Sequence[str] = REPORT_ISSUE_TYPES
) -> List[Issue]:
    """Issues whose type is one of ``allowed_types`` (case-insensitive)."""
    allowed = {t.strip().casefold() for t in allowed_types}
    return [i for i in issues if i.type.strip().casefold() in allowed]


@dataclass
class ReportAggregate:
    """Issues of a report with their totals and per-type tallies."""

    issues: List[Issue] = field(default_factory=list)
    totals: StatusCounts = field(default_factory=StatusCounts)
    by_type: Dict[str, StatusCounts] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.issues)

    def for_type(self, issue_type: str) -> StatusCounts:
        for name, counts in self.by_type.items():
            if name.casefold() == issue_type.strip().casefold():
                return counts
        return StatusCounts()

    def issues_of_type(self, issue_type: str) -> List[Issue]:
        return [i for i in self.issues if _same_type(i, issue_type)]


def assemble_report(
    issues: Iterable[Issue], issue_types: Sequence[str] = REPORT_ISSUE_TYPES
) -> ReportAggregate:
    """Filter to ``issue_types``, dedupe by key and tally."""
    kept = dedupe_issues(filter_report_issues(issues, issue_types))
    return ReportAggregate(
        issues=kept,
        totals=count_statuses(kept),
        by_type={t: count_statuses(kept, t) for t in issue_types},
    )


# ----- narrative -----

_TYPE_LABELS = {
    "bug": "bugs",
    "improvement": "improvement requests",
    "story": "stories",
}

_BREAKDOWN_ORDER = (
    StatusBucket.CLOSED,
    StatusBucket.CANCELLED,
    StatusBucket.IN_PROGRESS,
    StatusBucket.DEV_COMPLETED,
    StatusBucket.IN_QA,
    StatusBucket.BLOCKED,
)


def format_report_date(value: Union[date, datetime, None]) -> str:
    """``12 May 2025``; empty for ``None``."""
    if value is None:
        return ""
    return f"{value.day} {value.strftime('%B %Y')}"


def build_date_lead(
    start: Union[date, datetime, None], end: Union[date, datetime, None]
) -> str:
    start_text = format_report_date(start)
    end_text = format_report_date(end)

    if start_text and end_text:
        return f"Between {start_text} and {end_text}"
    if start_text:
        return f"Since {start_text}"
    if end_text:
        return f"Until {end_text}"
    return ""


def build_breakdown(counts: StatusCounts) -> str:
    """``8 Closed, 1 Cancelled``; empty buckets are skipped."""
    parts = []
    for bucket in _BREAKDOWN_ORDER:
        n = counts.get(bucket)
        if n > 0:
            parts.append(f"{n} {bucket.value}")
    return ", ".join(parts)


def build_summary_paragraph(
    project: str,
    sprint: str,
    aggregate: ReportAggregate,
    dates: Optional[SprintDates] = None,
    environment: str = DEFAULT_TEST_ENVIRONMENT,
) -> str:
    """Opening paragraph of the Summary section."""
    project = project.strip() or "Project"
    sprint = sprint.strip() or "Sprint"
    dates = dates or SprintDates()

    lead = build_date_lead(dates.start, dates.end)
    scope = f"in the {environment} environments"
    opening = f"{lead}, {scope}" if lead else scope[0].upper() + scope[1:]

    return (
        f"{opening}, {aggregate.total} issues were recorded for {sprint} of the "
        f"{project} project. {aggregate.totals.closed} of them are Closed."
    )


def build_type_bullet(label: str, counts: StatusCounts) -> Optional[str]:
    """One bullet line for a type; ``None`` when the type has no issues."""
    if counts.total == 0:
        return None

    line = f"During testing, {counts.total} {label} were reported."
    breakdown = build_breakdown(counts)
    if breakdown:
        line += f" Of these, {breakdown}."
    return line


def type_label(issue_type: str) -> str:
    """Plural wording for ``issue_type`` in the summary bullets."""
    name = issue_type.strip()
    return _TYPE_LABELS.get(name.casefold(), f"{name.lower()} issues")


def build_type_bullets(aggregate: ReportAggregate) -> List[str]:
    """Bullets in the order the report's issue types were requested."""
    bullets = []
    for issue_type, counts in aggregate.by_type.items():
        bullet = build_type_bullet(type_label(issue_type), counts)
        if bullet:
            bullets.append(bullet)
    return bullets


@dataclass
class SprintReport:
    """Everything a renderer needs to produce the sprint report."""

    project: str
    sprint: str
    member_name: str
    aggregate: ReportAggregate
    dates: SprintDates = field(default_factory=SprintDates)
    report_date: date = field(default_factory=date.today)
    environment: str = DEFAULT_TEST_ENVIRONMENT

    @property
    def placeholders(self) -> Dict[str, str]:
        return {
            "{{PROJECT}}": self.project,
            "{{FORM_DATE}}": format_report_date(self.report_date),
            "{{MEMBER_NAME}}": self.member_name,
            "{{SPRINT}}": self.sprint,
        }

    @property
    def summary_paragraph(self) -> str:
        return build_summary_paragraph(
            self.project, self.sprint, self.aggregate, self.dates, self.environment
        )

    @property
    def bullets(self) -> List[str]:
        return build_type_bullets(self.aggregate)

    @property
    def sections(self) -> List[Tuple[str, List[Issue]]]:
        """Table sections in document order."""
        return [
            ("Test Case Status", list(self.aggregate.issues)),
            ("Bugs Opened During the Sprint", self.aggregate.issues_of_type("Bug")),
            (
                "Improvements Opened During the Sprint",
                self.aggregate.issues_of_type("Improvement"),
            ),
        ]
