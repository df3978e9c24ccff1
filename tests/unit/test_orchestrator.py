"""Unit tests for the report orchestrator."""

from datetime import datetime
from unittest.mock import AsyncMock, Mock

import pytest

from sprint_report.core.orchestrator import (
    ReportOrchestrator,
    WorkflowStatus,
    create_jira_client,
)
from sprint_report.core.config_manager import JiraConfig
from sprint_report.integrations.jira_client import JiraQueryClient
from sprint_report.integrations.jira_models import AuthScheme, SprintDates, ValidationResult
from sprint_report.utils.exceptions import (
    ConfigurationError,
    ExportError,
    TemplateNotFoundError,
    ValidationError,
)


class FakeClient:
    """Stand-in for JiraQueryClient with awaitable mocks."""

    def __init__(self, issues=None, dates=None, validation=None):
        self.search_issues_by_project_and_sprint = AsyncMock(return_value=issues or [])
        self.resolve_sprint_dates = AsyncMock(return_value=dates or SprintDates())
        self.validate_credentials = AsyncMock(return_value=validation)
        self.close = AsyncMock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


@pytest.fixture
def configured(config_manager):
    config_manager.update_jira_config(
        url="https://jira.example.com",
        username="me@example.com",
        secret="pat-123",
    )
    return config_manager


@pytest.fixture
def fake_client(sample_issues):
    return FakeClient(
        issues=sample_issues,
        dates=SprintDates(datetime(2025, 6, 2), datetime(2025, 6, 13)),
    )


@pytest.fixture
def orchestrator(configured, fake_client):
    factory = Mock(return_value=fake_client)
    return ReportOrchestrator(configured, client_factory=factory)


class TestReportOrchestrator:
    """Test suite for ReportOrchestrator."""

    def test_initialization(self, orchestrator):
        assert orchestrator.is_cancelled is False
        assert orchestrator.jira_client is None
        assert len(orchestrator.stages) == 6

    def test_set_progress_callback(self, orchestrator):
        callback = Mock()
        orchestrator.set_progress_callback(callback)

        orchestrator._update_progress("Test message", 50)

        callback.assert_called_once_with("Test message", 50)

    def test_build_request_uses_saved_values(self, orchestrator, configured, tmp_path):
        configured.update_report_config(
            project="AIRPMD", member_name="Jane Doe", output_dir=str(tmp_path)
        )

        request = orchestrator.build_request(sprint=" Sprint 73 ", output_format="PDF")

        assert request.project == "AIRPMD"
        assert request.sprint == "Sprint 73"
        assert request.member_name == "Jane Doe"
        assert request.issue_types == ["Bug", "Improvement", "Story"]
        assert request.output_format == "pdf"
        assert request.output_dir == tmp_path
        assert request.template_path is None

    @pytest.mark.asyncio
    async def test_generate_report(self, orchestrator, fake_client, tmp_path):
        progress = Mock()
        orchestrator.set_progress_callback(progress)

        result = await orchestrator.generate_report(
            project="AIRPMD",
            sprint="73",
            member_name="Jane Doe",
            output_format="markdown",
            output_dir=str(tmp_path),
        )

        assert result.status == WorkflowStatus.COMPLETED
        assert result.error_message is None
        assert result.stages_completed == orchestrator.stages
        # the Task is not part of the report
        assert result.issue_count == 7
        assert result.output_path.parent == tmp_path
        assert result.output_path.exists()
        assert result.report.dates.start == datetime(2025, 6, 2)

        fake_client.search_issues_by_project_and_sprint.assert_awaited_once_with(
            "AIRPMD",
            "73",
            issue_types=["Bug", "Improvement", "Story"],
            timeout=60,
        )
        fake_client.close.assert_awaited_once()
        progress.assert_called_with("Report generated", 100)

    @pytest.mark.asyncio
    async def test_no_issues_still_produces_report(self, configured, tmp_path):
        client = FakeClient()
        orchestrator = ReportOrchestrator(configured, client_factory=Mock(return_value=client))

        result = await orchestrator.generate_report(
            project="AIRPMD",
            sprint="99",
            member_name="Jane Doe",
            output_format="markdown",
            output_dir=str(tmp_path),
        )

        assert result.status == WorkflowStatus.COMPLETED
        assert result.issue_count == 0
        assert "(No issues)" in result.output_path.read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_missing_form_field(self, orchestrator):
        with pytest.raises(ValidationError, match="Member name cannot be empty."):
            await orchestrator.generate_report(project="AIRPMD", sprint="73")

    @pytest.mark.asyncio
    async def test_missing_template_propagates(self, orchestrator, fake_client, tmp_path):
        with pytest.raises(TemplateNotFoundError):
            await orchestrator.generate_report(
                project="AIRPMD",
                sprint="73",
                member_name="Jane Doe",
                output_format="docx",
                template_path=str(tmp_path / "missing.docx"),
            )

        fake_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fetch_failure_is_reported(self, orchestrator, fake_client, tmp_path):
        fake_client.search_issues_by_project_and_sprint.side_effect = RuntimeError("boom")

        result = await orchestrator.generate_report(
            project="AIRPMD",
            sprint="73",
            member_name="Jane Doe",
            output_format="markdown",
            output_dir=str(tmp_path),
        )

        assert result.status == WorkflowStatus.FAILED
        assert "boom" in result.error_message
        assert result.stages_completed == ["validate_configuration", "initialize_client"]
        fake_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unconfigured_connection_fails(self, config_manager, tmp_path):
        orchestrator = ReportOrchestrator(config_manager, client_factory=Mock())

        result = await orchestrator.generate_report(
            project="AIRPMD",
            sprint="73",
            member_name="Jane Doe",
            output_format="markdown",
            output_dir=str(tmp_path),
        )

        assert result.status == WorkflowStatus.FAILED
        assert "not configured" in result.error_message

    @pytest.mark.asyncio
    async def test_cancellation(self, orchestrator, fake_client, tmp_path):
        async def cancel_during_fetch(*args, **kwargs):
            orchestrator.cancel()
            return []

        fake_client.search_issues_by_project_and_sprint.side_effect = cancel_during_fetch

        result = await orchestrator.generate_report(
            project="AIRPMD",
            sprint="73",
            member_name="Jane Doe",
            output_format="markdown",
            output_dir=str(tmp_path),
        )

        assert result.status == WorkflowStatus.CANCELLED
        assert result.error_message == "Workflow was cancelled by user"
        assert "resolve_sprint_dates" not in result.stages_completed
        assert result.output_path is None

    @pytest.mark.asyncio
    async def test_validate_login_remembers_working_scheme(self, configured, tmp_path):
        client = FakeClient(
            validation=ValidationResult(
                success=True,
                message="Authenticated with Bearer auth (REST API v2)",
                auth_scheme=AuthScheme.BEARER,
                api_version=2,
            )
        )
        orchestrator = ReportOrchestrator(configured, client_factory=Mock(return_value=client))

        result = await orchestrator.validate_login()

        assert result.success
        assert configured.get_jira_config().auth_scheme == "bearer"
        client.validate_credentials.assert_awaited_once_with(timeout=15)
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_validate_login_requires_secret(self, config_manager):
        config_manager.update_jira_config(
            url="https://jira.example.com", username="me@example.com"
        )
        orchestrator = ReportOrchestrator(config_manager, client_factory=Mock())

        with pytest.raises(ValidationError, match="Please enter your API token or password."):
            await orchestrator.validate_login()


class TestCreateJiraClient:
    def test_requires_secret(self):
        with pytest.raises(ConfigurationError):
            create_jira_client(JiraConfig(url="https://jira.example.com", username="me"))

    def test_builds_client_with_preferred_scheme(self):
        client = create_jira_client(
            JiraConfig(
                url="https://jira.example.com",
                username="me@example.com",
                secret="pat-123",
                auth_scheme="bearer",
            )
        )

        assert isinstance(client, JiraQueryClient)
        assert client.scheme_order[0] == AuthScheme.BEARER


def test_export_error_is_an_application_error():
    assert issubclass(TemplateNotFoundError, ExportError)
