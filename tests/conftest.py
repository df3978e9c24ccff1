"""Pytest configuration and fixtures for the Sprint Report Generator tests."""

import json
import re
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, Mock

import pytest

from sprint_report.core.config_manager import ConfigManager
from sprint_report.core.security_manager import SecurityManager
from sprint_report.integrations.base_client import HttpResponse
from sprint_report.integrations.jira_client import JiraQueryClient
from sprint_report.integrations.jira_models import AuthScheme, Issue

BASE_URL = "https://jira.example.com"
SPRINT_REPORT = "/rest/greenhopper/1.0/rapid/charts/sprintreport"


def json_response(payload: Any, status: int = 200) -> HttpResponse:
    return HttpResponse(status=status, text=json.dumps(payload))


def issue_json(key: str, issue_type: str = "Bug", status: str = "Open",
               project: str = "AIRPMD Project", summary: Optional[str] = None):
    return {
        "key": key,
        "fields": {
            "summary": summary or f"Summary of {key}",
            "issuetype": {"name": issue_type},
            "status": {"name": status},
            "project": {"name": project},
        },
    }


def sprint_json(sprint_id: int, name: str, start: Optional[str] = None,
                end: Optional[str] = None, **extra):
    sprint = {"id": sprint_id, "name": name, "state": "closed"}
    if start:
        sprint["startDate"] = start
    if end:
        sprint["endDate"] = end
    sprint.update(extra)
    return sprint


def keys_in_query(jql: str) -> List[str]:
    """Keys listed in a ``key in (...)`` clause."""
    match = re.search(r"key in \(([^)]*)\)", jql)
    if not match:
        return []
    return [k.strip() for k in match.group(1).split(",") if k.strip()]


Handler = Callable[[Dict[str, Any], AuthScheme], HttpResponse]


class FakeJira:
    """In-memory stand-in for the Jira REST endpoints.

    Unknown endpoints answer 404; schemes outside ``accepted_schemes``
    answer 401 with ``auth_error_body``.
    """

    def __init__(self):
        self.routes: Dict[str, Handler] = {}
        self.calls: List[Tuple[str, Dict[str, Any], AuthScheme]] = []
        self.accepted_schemes = {AuthScheme.BASIC, AuthScheme.BEARER}
        self.auth_error_body = '{"errorMessages":["You are not authenticated."]}'
        self.sprint_reports: Dict[Tuple[int, int], Dict[str, Any]] = {}

    def add(self, endpoint: str, payload: Any = None, status: int = 200,
            handler: Optional[Handler] = None) -> None:
        if handler is None:
            response = json_response(payload, status)
            handler = lambda params, scheme: response  # noqa: E731

        self.routes[endpoint] = handler

    def add_boards(self, board_ids: List[int]) -> None:
        self.add(
            "/rest/agile/1.0/board",
            {"values": [{"id": b, "name": f"Board {b}"} for b in board_ids],
             "startAt": 0, "isLast": True},
        )

    def add_sprints(self, board_id: int, sprints: List[Dict[str, Any]]) -> None:
        self.add(
            f"/rest/agile/1.0/board/{board_id}/sprint",
            {"values": sprints, "startAt": 0, "isLast": True},
        )

    def add_sprint_report(self, board_id: int, sprint_id: int, contents: Dict[str, Any]) -> None:
        self.sprint_reports[(board_id, sprint_id)] = contents

        def handler(params, scheme):
            key = (int(params["rapidViewId"]), int(params["sprintId"]))
            if key not in self.sprint_reports:
                return HttpResponse(status=404, text="")
            return json_response({"contents": self.sprint_reports[key]})

        self.routes[SPRINT_REPORT] = handler

    def add_search(self, handler: Callable[[str], List[Dict[str, Any]]],
                   versions: Tuple[int, ...] = (3, 2)) -> None:
        """Serve search results computed from the JQL text."""
        def route(params, scheme):
            return json_response({"issues": handler(params["jql"])})

        for version in versions:
            self.routes[f"/rest/api/{version}/search"] = route

    async def handle(self, endpoint: str, params: Optional[Dict[str, Any]],
                     scheme: AuthScheme) -> HttpResponse:
        params = dict(params or {})
        self.calls.append((endpoint, params, scheme))

        if scheme not in self.accepted_schemes:
            return HttpResponse(status=401, text=self.auth_error_body)

        handler = self.routes.get(endpoint)
        if handler is None:
            return HttpResponse(status=404, text="")
        return handler(params, scheme)

    def calls_to(self, endpoint: str) -> List[Tuple[Dict[str, Any], AuthScheme]]:
        return [(p, s) for e, p, s in self.calls if e == endpoint]

    def search_queries(self) -> List[str]:
        return [p["jql"] for e, p, s in self.calls if e.endswith("/search")]


@pytest.fixture
def fake_jira():
    return FakeJira()


@pytest.fixture
def make_client(fake_jira):
    """Factory for query clients wired to ``fake_jira``."""

    def factory(preferred_scheme=AuthScheme.BASIC, **kwargs):
        client = JiraQueryClient(
            url=BASE_URL,
            username="tester@example.com",
            secret="secret-token",
            preferred_scheme=preferred_scheme,
            **kwargs,
        )
        client._send = AsyncMock(side_effect=fake_jira.handle)
        return client

    return factory


@pytest.fixture
def jira_client(make_client):
    return make_client()


@pytest.fixture
def sample_issues():
    return [
        Issue("AIRPMD", "Bug", "AIRPMD-1", "Login fails", "Closed"),
        Issue("AIRPMD", "Bug", "AIRPMD-2", "Crash on save", "In Progress"),
        Issue("AIRPMD", "Bug", "AIRPMD-3", "Wrong label", "Blocked"),
        Issue("AIRPMD", "Improvement", "AIRPMD-4", "Faster search", "Done"),
        Issue("AIRPMD", "Improvement", "AIRPMD-5", "Dark mode", "Triage"),
        Issue("AIRPMD", "Story", "AIRPMD-6", "Export to PDF", "In Q&A"),
        Issue("AIRPMD", "Story", "AIRPMD-7", "Audit log", "Cancelled"),
        Issue("AIRPMD", "Task", "AIRPMD-8", "Update build", "Closed"),
    ]


@pytest.fixture
def temp_config_dir(tmp_path):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def mock_security_manager():
    """Mock security manager keeping credentials in a dict."""
    store: Dict[str, str] = {}
    mock_manager = Mock(spec=SecurityManager)
    mock_manager.store_credential.side_effect = (
        lambda service, username, value: store.__setitem__(f"{service}:{username}", value)
    )
    mock_manager.retrieve_credential.side_effect = (
        lambda service, username: store.get(f"{service}:{username}")
    )
    mock_manager.delete_credential.side_effect = (
        lambda service, username: store.pop(f"{service}:{username}", None)
    )
    mock_manager.store = store
    return mock_manager


@pytest.fixture
def config_manager(temp_config_dir, mock_security_manager, monkeypatch):
    monkeypatch.delenv("SPRINT_REPORT_SECRET", raising=False)
    return ConfigManager(config_dir=temp_config_dir, security_manager=mock_security_manager)


pytest_markers = [
    "unit: Unit tests",
    "integration: Integration tests",
    "slow: Slow-running tests",
]


def pytest_configure(config):
    """Configure pytest with custom markers."""
    for marker in pytest_markers:
        config.addinivalue_line("markers", marker)
