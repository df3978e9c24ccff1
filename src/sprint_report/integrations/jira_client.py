"""Jira query client: credential checks, issue search and sprint resolution.

The client talks to the REST API directly so that it can try both
authorization schemes and both API versions, and reach the Agile and
GreenHopper endpoints used for sprint discovery. Every network, HTTP and
parse failure is absorbed here: callers see an empty list or ``None``,
never an exception.
"""

import asyncio
import base64
import re
from typing import Any, Awaitable, Dict, Iterable, List, Optional, TypeVar

from ..utils.exceptions import ConnectionError, ValidationError
from ..utils.validators import InputValidator
from . import jql
from .base_client import BaseIntegrationClient, HttpResponse
from .jira_models import (
    AuthScheme,
    Issue,
    SprintCandidate,
    SprintDates,
    SprintSelection,
    ValidationResult,
)
from .sprint_matching import (
    candidate_from_json,
    extract_sprint_report_keys,
    first_loose_match,
    most_recent_candidate,
    partition_candidates,
    read_sprint_dates,
)

T = TypeVar("T")

_KEY_NUMBER = re.compile(r"^(.*)-(\d+)$")


def _key_sort_key(key: str):
    """Natural ordering for issue keys (``X-2`` before ``X-10``)."""
    match = _KEY_NUMBER.match(key)
    if match:
        return (match.group(1), int(match.group(2)), key)
    return (key, -1, key)


def _truncate(text: str, limit: int) -> str:
    text = " ".join((text or "").split())
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class JiraQueryClient(BaseIntegrationClient):
    """Resilient Jira REST client for sprint reporting.

    Both ``Authorization`` headers are built up front. The scheme is chosen
    per request, starting with ``preferred_scheme``; a 401/403 answer is
    retried once with the other scheme.

    Example:
        ```python
        async with JiraQueryClient(url, "me@corp.com", token) as client:
            issues = await client.search_issues_by_project_and_sprint(
                "AIRPMD", "Sprint 73", issue_types=["Bug", "Story"], timeout=60
            )
        ```
    """

    SEARCH_FIELDS = "summary,issuetype,status,project"
    SEARCH_MAX_RESULTS = 1000
    SEARCH_API_VERSIONS = (3, 2)
    BOARD_PAGE_SIZE = 50
    SPRINT_PAGE_SIZE = 50
    SPRINT_STATES = "active,closed,future"
    MAX_PAGES = 200
    DIAGNOSTIC_BODY_LIMIT = 200

    def __init__(
        self,
        url: str,
        username: str,
        secret: str,
        preferred_scheme: AuthScheme = AuthScheme.BASIC,
        rate_limit: int = 100,
        timeout: int = 20,
        require_project_key: bool = False,
    ):
        InputValidator.validate_jira_url(url)
        if not username or not username.strip():
            raise ValidationError("username is required")
        if not secret or not secret.strip():
            raise ValidationError("secret is required")

        super().__init__(base_url=url, rate_limit=rate_limit, timeout=timeout)

        self.username = username.strip()
        self.preferred_scheme = AuthScheme.parse(preferred_scheme)
        self.require_project_key = require_project_key

        basic = base64.b64encode(f"{self.username}:{secret}".encode("utf-8")).decode()
        self._auth_headers: Dict[AuthScheme, Dict[str, str]] = {
            AuthScheme.BASIC: {"Authorization": f"Basic {basic}"},
            AuthScheme.BEARER: {"Authorization": f"Bearer {secret.strip()}"},
        }

    @property
    def scheme_order(self) -> List[AuthScheme]:
        return self.preferred_scheme.with_fallback()

    # ----- transport -----

    async def _send(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]],
        scheme: AuthScheme,
    ) -> HttpResponse:
        """Single GET under one auth scheme."""
        return await self.get(endpoint, params=params, headers=self._auth_headers[scheme])

    async def _get_json(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> Optional[Any]:
        """GET and decode JSON, trying the next scheme on 401/403.

        Returns ``None`` on any failure.
        """
        schemes = self.scheme_order
        for index, scheme in enumerate(schemes):
            try:
                response = await self._send(endpoint, params, scheme)
            except ConnectionError:
                return None

            if response.is_auth_failure:
                next_scheme = schemes[index + 1].value if index + 1 < len(schemes) else None
                self.security_logger.scheme_fallback(
                    endpoint, scheme.value, response.status, next_scheme
                )
                continue

            if not response.ok:
                self.logger.debug(f"{endpoint} returned {response.status}")
                return None

            try:
                return response.json()
            except ValueError:
                self.logger.warning(f"Malformed JSON from {endpoint}")
                return None

        return None

    async def _bounded(
        self, operation: Awaitable[T], timeout: Optional[float], default: T, name: str
    ) -> T:
        """Run ``operation`` under an optional deadline; ``default`` on expiry."""
        if timeout is None:
            return await operation

        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.warning(f"{name} timed out after {timeout} seconds")
            return default

    # ----- credential validation -----

    async def validate_credentials(
        self, timeout: Optional[float] = None
    ) -> ValidationResult:
        """Check the credentials against ``/myself`` on both API versions.

        Cloud (Basic) tries v3 first, Server/Data Center (Bearer) v2 first.
        """
        expired = ValidationResult(
            success=False,
            message=(
                f"Connection timed out after {timeout} seconds. "
                "Please check URL/network and try again."
            ),
        )
        return await self._bounded(
            self._validate_credentials(), timeout, expired, "validate_credentials"
        )

    async def _validate_credentials(self) -> ValidationResult:
        versions = (3, 2) if self.preferred_scheme is AuthScheme.BASIC else (2, 3)
        failures: List[ValidationResult] = []

        for version in versions:
            for scheme in self.scheme_order:
                endpoint = f"/rest/api/{version}/myself"
                try:
                    response = await self._send(endpoint, None, scheme)
                except ConnectionError as e:
                    self.security_logger.authentication(
                        self.username, success=False, error="connection"
                    )
                    return ValidationResult(
                        success=False,
                        message=f"Connection error: {e.message}",
                        auth_scheme=scheme,
                        api_version=version,
                    )

                if response.ok:
                    self.security_logger.authentication(
                        self.username,
                        success=True,
                        auth_scheme=scheme.value,
                        api_version=version,
                    )
                    self.logger.info(
                        f"Authenticated with {scheme.value} auth on REST API v{version}"
                    )
                    return ValidationResult(
                        success=True,
                        message=(
                            f"Authenticated with {scheme.value.title()} auth "
                            f"(REST API v{version})"
                        ),
                        auth_scheme=scheme,
                        api_version=version,
                        status_code=response.status,
                    )

                failures.append(self._describe_failure(response, scheme, version))

        self.security_logger.authentication(
            self.username,
            success=False,
            status_codes=[f.status_code for f in failures],
        )

        # 401/403 carry the most useful diagnostics for the operator
        for failure in failures:
            if failure.status_code in (401, 403):
                return failure
        return failures[-1]

    def _describe_failure(
        self, response: HttpResponse, scheme: AuthScheme, version: int
    ) -> ValidationResult:
        message = (
            f"HTTP {response.status} using {scheme.value.title()} auth "
            f"(REST API v{version})"
        )
        if response.is_auth_failure:
            body = _truncate(response.text, self.DIAGNOSTIC_BODY_LIMIT)
            if body:
                message = f"{message}: {body}"

        return ValidationResult(
            success=False,
            message=message,
            auth_scheme=scheme,
            api_version=version,
            status_code=response.status,
        )

    async def validate_connection(self) -> bool:
        """Validate the connection to the service."""
        return (await self.validate_credentials()).success

    # ----- issue search -----

    async def search_issues(
        self, query: str, timeout: Optional[float] = None
    ) -> List[Issue]:
        """Run a JQL search; first non-empty answer wins.

        Tries v3 then v2 under each auth scheme in turn. An empty list means
        every attempt failed or returned nothing.
        """
        return await self._bounded(self._search(query), timeout, [], "search_issues")

    async def _search(self, query: str, validate_query: Optional[str] = None) -> List[Issue]:
        for scheme in self.scheme_order:
            for version in self.SEARCH_API_VERSIONS:
                issues = await self._try_search(query, version, scheme, validate_query)
                if issues:
                    self.security_logger.search(version, scheme.value, len(issues))
                    return issues

        self.logger.info(f"No issues found for JQL: {query}")
        return []

    async def _try_search(
        self,
        query: str,
        version: int,
        scheme: AuthScheme,
        validate_query: Optional[str] = None,
    ) -> Optional[List[Issue]]:
        params: Dict[str, Any] = {
            "jql": query,
            "fields": self.SEARCH_FIELDS,
            "maxResults": self.SEARCH_MAX_RESULTS,
        }
        if validate_query:
            params["validateQuery"] = validate_query

        endpoint = f"/rest/api/{version}/search"
        try:
            response = await self._send(endpoint, params, scheme)
        except ConnectionError:
            return None

        if not response.ok:
            self.logger.debug(
                f"Search v{version} ({scheme.value}) returned {response.status}"
            )
            return None

        try:
            payload = response.json()
        except ValueError:
            self.logger.warning(f"Malformed search response from v{version}")
            return None

        if not isinstance(payload, dict) or not isinstance(payload.get("issues"), list):
            return []

        issues = []
        for raw in payload["issues"]:
            issue = self.parse_issue(raw)
            if issue is not None:
                issues.append(issue)
        return issues

    @staticmethod
    def parse_issue(raw: Any) -> Optional[Issue]:
        """Normalize a search hit; missing fields become empty strings."""
        if not isinstance(raw, dict):
            return None

        key = raw.get("key")
        if not isinstance(key, str) or not key:
            return None

        fields = raw.get("fields")
        if not isinstance(fields, dict):
            fields = {}

        def named(field_name: str) -> str:
            value = fields.get(field_name)
            if isinstance(value, dict) and isinstance(value.get("name"), str):
                return value["name"]
            return ""

        summary = fields.get("summary")
        return Issue(
            project=named("project"),
            type=named("issuetype"),
            key=key,
            summary=summary if isinstance(summary, str) else "",
            status=named("status"),
        )

    async def search_issues_by_project(
        self,
        project: str,
        take: int = 50,
        issue_types: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
    ) -> List[Issue]:
        """Latest issues of a project, newest first, capped at ``take``."""
        issues = await self.search_issues(
            jql.project_query(project, issue_types), timeout=timeout
        )
        if take > 0:
            return issues[:take]
        return issues

    # ----- board and sprint discovery -----

    @staticmethod
    def _is_last_page(payload: Dict[str, Any], start_at: int, count: int) -> bool:
        if count == 0:
            return True
        is_last = payload.get("isLast")
        if isinstance(is_last, bool):
            return is_last
        total = payload.get("total")
        if isinstance(total, int):
            return start_at + count >= total
        return True

    async def _paged_values(
        self, endpoint: str, params: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """Collect ``values`` across ``startAt`` pages until ``isLast``."""
        values: List[Dict[str, Any]] = []
        start_at = 0

        for _ in range(self.MAX_PAGES):
            payload = await self._get_json(endpoint, {**params, "startAt": start_at})
            if not isinstance(payload, dict):
                break

            page = payload.get("values")
            if not isinstance(page, list):
                break

            values.extend(item for item in page if isinstance(item, dict))

            if self._is_last_page(payload, start_at, len(page)):
                break
            start_at += len(page)
        else:
            self.logger.warning(f"Stopped paging {endpoint} after {self.MAX_PAGES} pages")

        return values

    async def list_board_ids(self, project: str) -> List[int]:
        """Agile boards attached to the project."""
        boards = await self._paged_values(
            "/rest/agile/1.0/board",
            {"projectKeyOrId": project, "maxResults": self.BOARD_PAGE_SIZE},
        )

        board_ids = []
        for board in boards:
            try:
                board_ids.append(int(board["id"]))
            except (KeyError, TypeError, ValueError):
                continue
        return board_ids

    async def list_sprints(self, board_id: int) -> List[SprintCandidate]:
        """Every active, closed and future sprint of a board."""
        sprints = await self._paged_values(
            f"/rest/agile/1.0/board/{board_id}/sprint",
            {"state": self.SPRINT_STATES, "maxResults": self.SPRINT_PAGE_SIZE},
        )

        candidates = []
        for sprint in sprints:
            candidate = candidate_from_json(board_id, sprint)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    async def _scan_sprints(self, project: str) -> List[SprintCandidate]:
        """All sprints of all boards of the project, in board order."""
        candidates: List[SprintCandidate] = []
        board_ids = await self.list_board_ids(project)

        for board_id in board_ids:
            candidates.extend(await self.list_sprints(board_id))

        self.logger.debug(
            f"Scanned {len(board_ids)} boards, {len(candidates)} sprints for {project}"
        )
        return candidates

    async def fetch_sprint_report_keys(self, board_id: int, sprint_id: int) -> frozenset:
        """Authoritative member keys from the board's Sprint Report."""
        payload = await self._get_json(
            "/rest/greenhopper/1.0/rapid/charts/sprintreport",
            {"rapidViewId": board_id, "sprintId": sprint_id},
        )
        return extract_sprint_report_keys(payload)

    async def _fetch_sprint_dates(self, sprint_id: int) -> Optional[SprintDates]:
        payload = await self._get_json(f"/rest/agile/1.0/sprint/{sprint_id}")
        if not isinstance(payload, dict):
            return None
        return read_sprint_dates(payload)

    def _pick_candidate(
        self, candidates: List[SprintCandidate], project: str, sprint_text: str
    ) -> Optional[SprintCandidate]:
        matches = partition_candidates(
            candidates, sprint_text, project, self.require_project_key
        )
        if matches:
            return matches.preferred[0]
        return first_loose_match(candidates, sprint_text)

    # ----- sprint resolution -----

    async def resolve_sprint_selection(
        self, project: str, sprint_text: str, timeout: Optional[float] = None
    ) -> Optional[SprintSelection]:
        """Resolve typed sprint text to a sprint and its official keys."""
        return await self._bounded(
            self._resolve_selection(project, sprint_text),
            timeout,
            None,
            "resolve_sprint_selection",
        )

    async def _resolve_selection(
        self, project: str, sprint_text: str
    ) -> Optional[SprintSelection]:
        project = (project or "").strip()
        sprint_text = (sprint_text or "").strip()
        if not project or not sprint_text:
            return None

        candidates = await self._scan_sprints(project)
        matches = partition_candidates(
            candidates, sprint_text, project, self.require_project_key
        )
        pool = matches.preferred

        for candidate in pool:
            keys = await self.fetch_sprint_report_keys(
                candidate.board_id, candidate.sprint_id
            )
            if keys:
                self.logger.info(
                    f"Sprint '{candidate.name}' ({candidate.sprint_id}) on board "
                    f"{candidate.board_id}: {len(keys)} keys from Sprint Report"
                )
                return self._selected(
                    project,
                    sprint_text,
                    SprintSelection(
                        sprint_id=candidate.sprint_id,
                        board_id=candidate.board_id,
                        official_keys=frozenset(keys),
                    ),
                    "sprint_report",
                )

        recent = most_recent_candidate(pool)
        if recent is not None:
            self.logger.info(
                f"No Sprint Report keys for '{sprint_text}', using most recent "
                f"match '{recent.name}' ({recent.sprint_id})"
            )
            return self._selected(
                project,
                sprint_text,
                SprintSelection(sprint_id=recent.sprint_id, board_id=recent.board_id),
                "most_recent",
            )

        loose = first_loose_match(candidates, sprint_text)
        if loose is not None:
            return self._selected(
                project,
                sprint_text,
                SprintSelection(sprint_id=loose.sprint_id, board_id=loose.board_id),
                "loose",
            )

        self.logger.info(f"Sprint '{sprint_text}' not found on boards of {project}")
        self.security_logger.sprint_resolved(project, sprint_text, None)
        return None

    def _selected(
        self, project: str, sprint_text: str, selection: SprintSelection, source: str
    ) -> SprintSelection:
        self.security_logger.sprint_resolved(
            project,
            sprint_text,
            selection.sprint_id,
            board_id=selection.board_id,
            source=source,
            key_count=len(selection.official_keys),
        )
        return selection

    async def search_issues_by_project_and_sprint(
        self,
        project: str,
        sprint_text: str,
        issue_types: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
    ) -> List[Issue]:
        """Issues of a sprint typed by a human.

        With Sprint Report keys the result is restricted to exactly those
        keys, the project and the requested types. Otherwise it falls back
        to a sprint-ID query, and with no ID at all to number/name queries.
        """
        types = list(issue_types) if issue_types is not None else None
        return await self._bounded(
            self._search_by_project_and_sprint(project, sprint_text, types),
            timeout,
            [],
            "search_issues_by_project_and_sprint",
        )

    async def _search_by_project_and_sprint(
        self, project: str, sprint_text: str, issue_types: Optional[List[str]]
    ) -> List[Issue]:
        if not (project or "").strip():
            return []

        selection = await self._resolve_selection(project, sprint_text)
        return await self._issues_for_selection(
            project, sprint_text, selection, issue_types
        )

    async def search_issues_for_selection(
        self,
        project: str,
        sprint_text: str,
        selection: Optional[SprintSelection],
        issue_types: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
    ) -> List[Issue]:
        """Final fetch for a sprint already resolved by ``resolve_sprint_selection``.

        Lets a caller show the selection and then fetch its issues without
        scanning boards and sprints a second time. ``selection=None`` runs
        the number/name queries built from ``sprint_text``.
        """
        types = list(issue_types) if issue_types is not None else None
        return await self._bounded(
            self._issues_for_selection(project, sprint_text, selection, types),
            timeout,
            [],
            "search_issues_for_selection",
        )

    async def _issues_for_selection(
        self,
        project: str,
        sprint_text: str,
        selection: Optional[SprintSelection],
        issue_types: Optional[List[str]],
    ) -> List[Issue]:
        project = (project or "").strip()
        sprint_text = (sprint_text or "").strip()
        if not project:
            return []

        if selection is not None and selection.has_official_keys:
            return await self._fetch_official_issues(project, selection, issue_types)

        if selection is not None:
            return await self._search(
                jql.sprint_id_query(project, selection.sprint_id, issue_types)
            )

        for query in jql.sprint_text_queries(project, sprint_text, issue_types):
            issues = await self._search(query)
            if issues:
                return issues
        return []

    async def _fetch_official_issues(
        self,
        project: str,
        selection: SprintSelection,
        issue_types: Optional[List[str]],
    ) -> List[Issue]:
        wanted_types = {t.strip().casefold() for t in issue_types or [] if t and t.strip()}
        keys = sorted(selection.official_keys, key=_key_sort_key)
        found: Dict[str, Issue] = {}

        for chunk in jql.chunked(keys):
            query = jql.sprint_keys_query(selection.sprint_id, chunk)
            # keys deleted or moved since the sprint closed must not fail the chunk
            for issue in await self._search(query, validate_query="warn"):
                if issue.key in found or issue.key not in selection.official_keys:
                    continue
                if not self._belongs_to_project(issue, project):
                    continue
                if wanted_types and issue.type.strip().casefold() not in wanted_types:
                    continue
                found[issue.key] = issue

        self.logger.info(
            f"{len(found)} of {len(keys)} Sprint Report issues kept for {project}"
        )
        return list(found.values())

    @staticmethod
    def _belongs_to_project(issue: Issue, project: str) -> bool:
        wanted = project.strip().casefold()
        return (
            issue.key.casefold().startswith(f"{wanted}-")
            or issue.project.strip().casefold() == wanted
        )

    async def resolve_sprint_id(
        self, project: str, sprint_text: str, timeout: Optional[float] = None
    ) -> Optional[int]:
        """Sprint ID for typed text, without consulting the Sprint Report."""
        return await self._bounded(
            self._resolve_sprint_id(project, sprint_text),
            timeout,
            None,
            "resolve_sprint_id",
        )

    async def _resolve_sprint_id(self, project: str, sprint_text: str) -> Optional[int]:
        candidate = await self._find_candidate(project, sprint_text)
        return candidate.sprint_id if candidate else None

    async def _find_candidate(
        self, project: str, sprint_text: str
    ) -> Optional[SprintCandidate]:
        project = (project or "").strip()
        sprint_text = (sprint_text or "").strip()
        if not project or not sprint_text:
            return None

        candidates = await self._scan_sprints(project)
        return self._pick_candidate(candidates, project, sprint_text)

    async def resolve_sprint_dates(
        self, project: str, sprint_text: str, timeout: Optional[float] = None
    ) -> SprintDates:
        """Start/end dates of the typed sprint, ``SprintDates()`` if unknown."""
        return await self._bounded(
            self._resolve_sprint_dates(project, sprint_text),
            timeout,
            SprintDates(),
            "resolve_sprint_dates",
        )

    async def _resolve_sprint_dates(self, project: str, sprint_text: str) -> SprintDates:
        candidate = await self._find_candidate(project, sprint_text)
        if candidate is None:
            return SprintDates()

        dates = SprintDates(start=candidate.start_date, end=candidate.end_date)
        if dates.is_complete:
            return dates

        detail = await self._fetch_sprint_dates(candidate.sprint_id)
        if detail is None:
            return dates

        return SprintDates(
            start=dates.start or detail.start,
            end=dates.end or detail.end,
        )

    def get_connection_info(self) -> Dict[str, Any]:
        """Get connection information."""
        return {
            "url": self.base_url,
            "username": self.username,
            "preferred_scheme": self.preferred_scheme.value,
            "connected": self._session is not None and not self._session.closed,
            "client_type": "jira",
        }
