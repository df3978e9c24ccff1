"""Workflow orchestrator for sprint report generation."""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional

from ..integrations.jira_client import JiraQueryClient
from ..integrations.jira_models import AuthScheme, Issue, SprintDates, ValidationResult
from ..utils.exceptions import ConfigurationError, ExportError, ReportError
from ..utils.logging_config import get_logger, get_security_logger
from ..utils.validators import InputValidator
from .config_manager import ConfigManager, JiraConfig
from .export_manager import ExportManager
from .report_assembler import ReportAggregate, SprintReport, assemble_report

ClientFactory = Callable[[JiraConfig], JiraQueryClient]


def create_jira_client(jira_config: JiraConfig) -> JiraQueryClient:
    """Build a query client from connection settings."""
    if not jira_config.secret:
        raise ConfigurationError("Jira API token or password not configured")

    return JiraQueryClient(
        url=jira_config.url,
        username=jira_config.username,
        secret=jira_config.secret,
        preferred_scheme=AuthScheme.parse(jira_config.auth_scheme),
        rate_limit=jira_config.rate_limit,
        timeout=jira_config.timeout,
    )


class WorkflowStatus(Enum):
    """Workflow execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ReportResult:
    """Result of a report generation run."""

    status: WorkflowStatus
    output_path: Optional[Path] = None
    issue_count: int = 0
    report: Optional[SprintReport] = None
    execution_time: float = 0.0
    error_message: Optional[str] = None
    stages_completed: List[str] = field(default_factory=list)


@dataclass
class ReportRequest:
    """Inputs of one report run; blanks fall back to the saved form values."""

    project: str
    sprint: str
    member_name: str
    issue_types: List[str]
    output_format: str = "docx"
    template_path: Optional[Path] = None
    output_dir: Optional[Path] = None
    output_path: Optional[Path] = None
    report_date: date = field(default_factory=date.today)


class ReportOrchestrator:
    """Runs login validation and the staged report workflow.

    Example:
        ```python
        orchestrator = ReportOrchestrator(ConfigManager())
        orchestrator.set_progress_callback(print_progress)

        result = await orchestrator.generate_report(
            project="AIRPMD", sprint="Sprint 73", member_name="Jane Doe"
        )
        ```
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        client_factory: Optional[ClientFactory] = None,
        export_manager: Optional[ExportManager] = None,
    ) -> None:
        self.config_manager = config_manager
        self.client_factory = client_factory or create_jira_client
        self.export_manager = export_manager or ExportManager()
        self.logger = get_logger(__name__)
        self.security_logger = get_security_logger()

        self.jira_client: Optional[JiraQueryClient] = None

        self.is_cancelled: bool = False
        self.progress_callback: Optional[Callable[[str, int], None]] = None

        self.stages = [
            "validate_configuration",
            "initialize_client",
            "fetch_issues",
            "resolve_sprint_dates",
            "assemble_report",
            "export_report",
        ]
        self.current_stage = 0

    def set_progress_callback(self, callback: Callable[[str, int], None]) -> None:
        """Set callback receiving a message and a percentage (0-100)."""
        self.progress_callback = callback

    def _update_progress(self, message: str, percentage: Optional[int] = None) -> None:
        if self.progress_callback:
            if percentage is None:
                percentage = int((self.current_stage / len(self.stages)) * 100)
            self.progress_callback(message, percentage)

    def cancel(self) -> None:
        """Cancel the workflow execution."""
        self.is_cancelled = True
        self.logger.info("Workflow cancellation requested")

    def create_client(self) -> JiraQueryClient:
        """Query client for the configured connection."""
        return self.client_factory(self.config_manager.get_jira_config())

    async def validate_login(self) -> ValidationResult:
        """Check the configured credentials against Jira."""
        jira_config = self.config_manager.get_jira_config()
        InputValidator.validate_login_inputs(jira_config.username, jira_config.url)
        InputValidator.validate_secret(jira_config.secret)

        async with self.client_factory(jira_config) as client:
            result = await client.validate_credentials(
                timeout=jira_config.validate_timeout
            )

        if result.success and result.auth_scheme is not None:
            # Remember the scheme that worked for the next session
            if result.auth_scheme.value != jira_config.auth_scheme:
                self.config_manager.update_jira_config(
                    auth_scheme=result.auth_scheme.value
                )

        return result

    def build_request(
        self,
        project: Optional[str] = None,
        sprint: Optional[str] = None,
        member_name: Optional[str] = None,
        issue_types: Optional[List[str]] = None,
        output_format: Optional[str] = None,
        template_path: Optional[str] = None,
        output_dir: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> ReportRequest:
        """Merge explicit arguments over the saved report form values."""
        saved = self.config_manager.get_report_config()

        template = template_path or saved.template_path
        directory = output_dir or saved.output_dir
        return ReportRequest(
            project=(project or saved.project).strip(),
            sprint=(sprint or saved.sprint).strip(),
            member_name=(member_name or saved.member_name).strip(),
            issue_types=list(issue_types or saved.issue_types),
            output_format=(output_format or saved.output_format).lower(),
            template_path=Path(template).expanduser() if template else None,
            output_dir=Path(directory).expanduser() if directory else None,
            output_path=Path(output_path).expanduser() if output_path else None,
        )

    async def generate_report(self, **kwargs: Any) -> ReportResult:
        """Run every stage for one report.

        Accepts the keyword arguments of ``build_request``. A sprint with
        no matching issues still produces a document.

        Raises:
            ValidationError: If the report form is incomplete
            ExportError: If the template is missing or the file cannot be written
        """
        request = self.build_request(**kwargs)
        InputValidator.validate_report_inputs(
            request.sprint, request.member_name, request.project
        )
        return await self.execute_workflow(request)

    async def execute_workflow(self, request: ReportRequest) -> ReportResult:
        """Execute the staged workflow for an already validated request."""
        start_time = datetime.now()
        result = ReportResult(status=WorkflowStatus.RUNNING)
        self.is_cancelled = False

        try:
            self.logger.info(
                f"Starting sprint report for {request.project} / {request.sprint}"
            )
            self.security_logger.workflow(
                "started",
                project=request.project,
                sprint=request.sprint,
                output_format=request.output_format,
            )

            await self._execute_stage("validate_configuration", result)
            if self.is_cancelled:
                return self._handle_cancellation(result, start_time)

            await self._execute_stage("initialize_client", result)
            if self.is_cancelled:
                return self._handle_cancellation(result, start_time)

            issues = await self._execute_stage("fetch_issues", result, request)
            if self.is_cancelled:
                return self._handle_cancellation(result, start_time)

            dates = await self._execute_stage("resolve_sprint_dates", result, request)
            if self.is_cancelled:
                return self._handle_cancellation(result, start_time)

            aggregate = await self._execute_stage(
                "assemble_report", result, issues, request
            )
            result.issue_count = aggregate.total
            result.report = SprintReport(
                project=request.project,
                sprint=request.sprint,
                member_name=request.member_name,
                aggregate=aggregate,
                dates=dates,
                report_date=request.report_date,
            )
            if self.is_cancelled:
                return self._handle_cancellation(result, start_time)

            result.output_path = await self._execute_stage(
                "export_report", result, result.report, request
            )

            result.status = WorkflowStatus.COMPLETED
            result.execution_time = (datetime.now() - start_time).total_seconds()
            self._update_progress("Report generated", 100)

            self.logger.info(
                f"Workflow completed in {result.execution_time:.2f}s: "
                f"{result.issue_count} issues -> {result.output_path}"
            )
            self.security_logger.workflow(
                "completed",
                execution_time=result.execution_time,
                issue_count=result.issue_count,
            )
            return result

        except ExportError:
            result.status = WorkflowStatus.FAILED
            result.execution_time = (datetime.now() - start_time).total_seconds()
            raise

        except Exception as e:
            result.status = WorkflowStatus.FAILED
            result.error_message = str(e)
            result.execution_time = (datetime.now() - start_time).total_seconds()

            self.logger.error(f"Workflow failed: {e}")
            self.security_logger.workflow(
                "failed",
                error_type=type(e).__name__,
                error_message=str(e),
                execution_time=result.execution_time,
            )
            return result

        finally:
            await self._cleanup_client()

    async def _execute_stage(self, stage_name: str, result: ReportResult, *args):
        """Run ``_stage_<name>`` with progress tracking.

        Errors from the stage keep their type when they already belong to
        the application hierarchy, otherwise they are wrapped in
        ``ReportError``.
        """
        self.current_stage = self.stages.index(stage_name)
        stage_number = self.current_stage + 1

        self.logger.info(f"Executing stage {stage_number}: {stage_name}")
        self._update_progress(
            f"Stage {stage_number}: {stage_name.replace('_', ' ').title()}"
        )

        try:
            method = getattr(self, f"_stage_{stage_name}")
            stage_result = await method(*args)

            result.stages_completed.append(stage_name)
            self.logger.info(f"Stage {stage_number} completed: {stage_name}")
            return stage_result

        except ReportError:
            self.logger.error(f"Stage {stage_number} failed: {stage_name}")
            raise
        except Exception as e:
            self.logger.error(f"Stage {stage_number} failed: {stage_name} - {e}")
            raise ReportError(f"Stage {stage_name} failed: {e}")

    async def _stage_validate_configuration(self) -> None:
        if not self.config_manager.validate_configuration():
            raise ConfigurationError(
                "Jira connection is not configured; run 'sprint-report configure'"
            )

    async def _stage_initialize_client(self) -> None:
        self.jira_client = self.create_client()

    async def _stage_fetch_issues(self, request: ReportRequest) -> List[Issue]:
        self._update_progress(f"Fetching issues of {request.sprint}...")
        timeout = self.config_manager.get_jira_config().search_timeout

        issues = await self.jira_client.search_issues_by_project_and_sprint(
            request.project,
            request.sprint,
            issue_types=request.issue_types,
            timeout=timeout,
        )

        if not issues:
            self.logger.warning(
                f"No issues found for {request.project} / {request.sprint}"
            )
        else:
            self.logger.info(f"Fetched {len(issues)} issues from Jira")
        return issues

    async def _stage_resolve_sprint_dates(self, request: ReportRequest) -> SprintDates:
        timeout = self.config_manager.get_jira_config().timeout
        return await self.jira_client.resolve_sprint_dates(
            request.project, request.sprint, timeout=timeout
        )

    async def _stage_assemble_report(
        self, issues: List[Issue], request: ReportRequest
    ) -> ReportAggregate:
        return assemble_report(issues, request.issue_types)

    async def _stage_export_report(
        self, report: SprintReport, request: ReportRequest
    ) -> Path:
        self._update_progress("Writing report...")

        output_path = request.output_path
        if output_path is None and request.output_dir is not None:
            output_path = self.export_manager.resolve_output_path(
                report, request.output_format, request.template_path, request.output_dir
            )

        # Export is blocking file I/O
        return await asyncio.to_thread(
            self.export_manager.export_report,
            report,
            request.output_format,
            output_path=output_path,
            template_path=request.template_path,
        )

    def _handle_cancellation(
        self, result: ReportResult, start_time: datetime
    ) -> ReportResult:
        result.status = WorkflowStatus.CANCELLED
        result.error_message = "Workflow was cancelled by user"
        result.execution_time = (datetime.now() - start_time).total_seconds()
        self.logger.info("Workflow cancelled by user")
        return result

    async def _cleanup_client(self) -> None:
        if self.jira_client is not None:
            try:
                await self.jira_client.close()
            except Exception as e:
                self.logger.warning(f"Error closing Jira client: {e}")
            self.jira_client = None
