"""JQL rendering helpers."""

import re
from typing import Iterable, Iterator, List, Optional, Sequence

PROJECT_KEY_PATTERN = re.compile(r"^[A-Z0-9_]+$")

# Keeps each search URL well under common server/proxy length limits
KEY_CHUNK_SIZE = 50

DEFAULT_ORDER = "ORDER BY updated DESC"


def looks_like_project_key(project: Optional[str]) -> bool:
    """Whether ``project`` is an uppercase key such as ``AIRPMD``."""
    return bool(project) and bool(PROJECT_KEY_PATTERN.match(project))


def quote(value: Optional[str]) -> str:
    """Render a JQL string literal, doubling embedded quotes."""
    return '"' + (value or "").replace('"', '""') + '"'


def project_clause(project: Optional[str]) -> str:
    """``project = KEY`` for keys, ``project = "Name"`` otherwise."""
    project = (project or "").strip()
    if looks_like_project_key(project):
        return f"project = {project}"
    return f"project = {quote(project)}"


def issue_type_clause(issue_types: Optional[Iterable[str]]) -> str:
    """`` AND issuetype in ("Bug", "Story")`` or an empty string."""
    if issue_types is None:
        return ""

    names = [t.strip() for t in issue_types if t and t.strip()]
    if not names:
        return ""

    return f" AND issuetype in ({', '.join(quote(n) for n in names)})"


def key_in_clause(keys: Sequence[str]) -> str:
    """``key in (A-1, A-2)``; keys are emitted bare."""
    return f"key in ({', '.join(keys)})"


def chunked(items: Sequence[str], size: int = KEY_CHUNK_SIZE) -> Iterator[List[str]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def sprint_id_query(
    project: str,
    sprint_id: int,
    issue_types: Optional[Iterable[str]] = None,
) -> str:
    """Project-scoped query for a resolved sprint ID."""
    return (
        f"{project_clause(project)} AND sprint = {int(sprint_id)}"
        f"{issue_type_clause(issue_types)} {DEFAULT_ORDER}"
    )


def sprint_keys_query(sprint_id: int, keys: Sequence[str]) -> str:
    """Sprint-and-keys query used with an authoritative key set."""
    return f"sprint = {int(sprint_id)} AND {key_in_clause(keys)} {DEFAULT_ORDER}"


def sprint_text_queries(
    project: str,
    sprint_text: str,
    issue_types: Optional[Iterable[str]] = None,
) -> List[str]:
    """Last-resort queries when no sprint ID could be resolved.

    Tries the number embedded in the text (Jira accepts a sprint ID there)
    and then the sprint name as a string literal.
    """
    base = project_clause(project)
    types = issue_type_clause(issue_types)
    queries = []

    numbers = re.findall(r"\d+", sprint_text or "")
    if numbers:
        queries.append(f"{base} AND sprint = {int(numbers[-1])}{types} {DEFAULT_ORDER}")

    if (sprint_text or "").strip():
        queries.append(
            f"{base} AND sprint = {quote(sprint_text.strip())}{types} {DEFAULT_ORDER}"
        )

    return queries


def project_query(project: str, issue_types: Optional[Iterable[str]] = None) -> str:
    """Latest issues of a project regardless of sprint."""
    return f"{project_clause(project)}{issue_type_clause(issue_types)} {DEFAULT_ORDER}"
