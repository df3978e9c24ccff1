"""Value types produced by the Jira query client."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional, Union


class AuthScheme(Enum):
    """Authorization header scheme.

    Jira Cloud expects ``Basic`` with an API token, Server/Data Center
    expects ``Bearer`` with a personal access token.
    """

    BASIC = "basic"
    BEARER = "bearer"

    @property
    def other(self) -> "AuthScheme":
        return AuthScheme.BEARER if self is AuthScheme.BASIC else AuthScheme.BASIC

    def with_fallback(self) -> List["AuthScheme"]:
        """This scheme followed by the other one."""
        return [self, self.other]

    @classmethod
    def parse(cls, value: Union[str, "AuthScheme"]) -> "AuthScheme":
        if isinstance(value, AuthScheme):
            return value
        return cls((value or "basic").strip().lower())


@dataclass(frozen=True)
class Issue:
    """A single ticket as returned by search."""

    project: str
    type: str
    key: str
    summary: str
    status: str


@dataclass(frozen=True)
class SprintCandidate:
    """A sprint that may be the one the user typed."""

    board_id: int
    sprint_id: int
    name: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass(frozen=True)
class SprintSelection:
    """The sprint chosen to drive the final issue fetch.

    ``official_keys`` comes from the Sprint Report. When it is non-empty the
    fetch is restricted to exactly those keys; otherwise it falls back to a
    sprint-ID query.
    """

    sprint_id: int
    board_id: Optional[int] = None
    official_keys: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def has_official_keys(self) -> bool:
        return bool(self.official_keys)


@dataclass(frozen=True)
class SprintDates:
    """Start/end of a sprint; either side may be unknown."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.start is not None and self.end is not None


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a credential check."""

    success: bool
    message: str = ""
    auth_scheme: Optional[AuthScheme] = None
    api_version: Optional[int] = None
    status_code: Optional[int] = None
