"""Command line entry point for the Sprint Report Generator."""

import argparse
import asyncio
import getpass
import sys
from pathlib import Path
from typing import List, Optional

from . import __app_name__, __version__
from .core.config_manager import AppConfig, ConfigManager
from .core.orchestrator import ReportOrchestrator, WorkflowStatus
from .integrations.jira_models import AuthScheme
from .utils.exceptions import ReportError
from .utils.logging_config import get_logger, setup_logging


def setup_application_paths() -> Path:
    """Ensure the application directory layout exists."""
    app_dir = Path.home() / ".sprint_report"
    app_dir.mkdir(parents=True, exist_ok=True)
    (app_dir / "logs").mkdir(exist_ok=True)
    return app_dir


def _split_types(value: str) -> List[str]:
    return [t.strip() for t in value.split(",") if t.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sprint-report",
        description=f"{__app_name__} - Jira sprint status reports",
    )
    parser.add_argument(
        "--config-dir", type=str, help="Configuration directory (default: ~/.sprint_report)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from config, WARNING)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Log file path (default: ~/.sprint_report/logs/app.log)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--version", action="version", version=f"{__app_name__} {__version__}"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    configure = commands.add_parser("configure", help="Store Jira connection settings")
    configure.add_argument("--url", help="Jira base URL")
    configure.add_argument("--username", help="User email / login")
    configure.add_argument(
        "--scheme",
        choices=[s.value for s in AuthScheme],
        help="Preferred auth scheme (basic for Cloud, bearer for Server/DC)",
    )
    configure.add_argument(
        "--remember",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Keep the secret in the system keyring",
    )
    configure.add_argument(
        "--ask-secret", action="store_true", help="Prompt for the API token/password"
    )

    commands.add_parser("validate", help="Check the stored credentials")

    search = commands.add_parser("search", help="Run a JQL query")
    search.add_argument("--jql", required=True, help="JQL query text")

    sprint = commands.add_parser("sprint", help="Resolve a sprint and list its issues")
    sprint.add_argument("--project", required=True, help="Project key or name")
    sprint.add_argument("--sprint", required=True, help="Sprint name or number")
    sprint.add_argument(
        "--types", type=_split_types, help="Comma separated issue types"
    )

    generate = commands.add_parser("generate", help="Generate the sprint report")
    generate.add_argument("--project", help="Project key or name")
    generate.add_argument("--sprint", help="Sprint name or number")
    generate.add_argument("--member", help="Member name written into the report")
    generate.add_argument("--template", help="Word template (.docx)")
    generate.add_argument(
        "--format", choices=["docx", "pdf", "markdown"], help="Output format"
    )
    generate.add_argument(
        "--types", type=_split_types, help="Comma separated issue types"
    )
    generate.add_argument("--output", help="Output file path")
    generate.add_argument("--output-dir", help="Output directory")

    return parser


def initialize_logging(args, app_dir: Path, app_config: AppConfig):
    """Initialize logging system; command line flags win over saved settings."""
    log_level = "DEBUG" if args.debug else (args.log_level or app_config.log_level)
    log_file = (
        args.log_file or app_config.log_file or str(app_dir / "logs" / "app.log")
    )

    setup_logging(level=log_level, log_file=log_file, console=True, redact=True)

    logger = get_logger(__name__)
    logger.info(f"{__app_name__} starting - Version {__version__}")
    return logger


def cmd_configure(args, config_manager: ConfigManager) -> int:
    updates = {}
    if args.url:
        updates["url"] = args.url
    if args.username:
        updates["username"] = args.username
    if args.scheme:
        updates["auth_scheme"] = args.scheme
    if args.remember is not None:
        updates["remember_me"] = args.remember
    if args.ask_secret:
        updates["secret"] = getpass.getpass("API token / password: ")

    config_manager.update_jira_config(**updates)
    jira = config_manager.get_config().jira
    print(f"Jira: {jira.url or '-'} as {jira.username or '-'} ({jira.auth_scheme})")
    return 0


async def cmd_validate(orchestrator: ReportOrchestrator) -> int:
    result = await orchestrator.validate_login()
    print(("OK: " if result.success else "FAILED: ") + result.message)
    return 0 if result.success else 1


async def cmd_search(args, orchestrator: ReportOrchestrator) -> int:
    timeout = orchestrator.config_manager.get_jira_config().search_timeout
    async with orchestrator.create_client() as client:
        issues = await client.search_issues(args.jql, timeout=timeout)

    for issue in issues:
        print(f"{issue.key:<14} {issue.type:<12} {issue.status:<16} {issue.summary}")
    print(f"{len(issues)} issues")
    return 0


async def cmd_sprint(args, orchestrator: ReportOrchestrator) -> int:
    timeout = orchestrator.config_manager.get_jira_config().search_timeout
    async with orchestrator.create_client() as client:
        selection = await client.resolve_sprint_selection(
            args.project, args.sprint, timeout=timeout
        )
        if selection is None:
            print(f"Sprint '{args.sprint}' not found for {args.project}")
        else:
            source = (
                f"{len(selection.official_keys)} keys from Sprint Report"
                if selection.has_official_keys
                else "no Sprint Report keys"
            )
            print(f"Sprint {selection.sprint_id} on board {selection.board_id}: {source}")

        issues = await client.search_issues_for_selection(
            args.project, args.sprint, selection, issue_types=args.types, timeout=timeout
        )

    for issue in issues:
        print(f"{issue.key:<14} {issue.type:<12} {issue.status:<16} {issue.summary}")
    print(f"{len(issues)} issues")
    return 0


def _print_progress(message: str, percentage: int) -> None:
    print(f"[{percentage:3d}%] {message}", file=sys.stderr)


async def cmd_generate(args, orchestrator: ReportOrchestrator) -> int:
    orchestrator.set_progress_callback(_print_progress)

    result = await orchestrator.generate_report(
        project=args.project,
        sprint=args.sprint,
        member_name=args.member,
        issue_types=args.types,
        output_format=args.format,
        template_path=args.template,
        output_dir=args.output_dir,
        output_path=args.output,
    )

    if result.status is not WorkflowStatus.COMPLETED:
        print(f"Report generation {result.status.value}: {result.error_message}")
        return 1

    if result.issue_count == 0:
        print("No issues matched; the report contains empty tables.")
    print(f"Report saved: {result.output_path}")

    orchestrator.config_manager.update_report_config(
        **{
            key: value
            for key, value in (
                ("project", args.project),
                ("sprint", args.sprint),
                ("member_name", args.member),
                ("template_path", args.template),
            )
            if value
        }
    )
    return 0


def run(args, config_manager: ConfigManager) -> int:
    if args.command == "configure":
        return cmd_configure(args, config_manager)

    orchestrator = ReportOrchestrator(config_manager)
    if args.command == "validate":
        return asyncio.run(cmd_validate(orchestrator))
    if args.command == "search":
        return asyncio.run(cmd_search(args, orchestrator))
    if args.command == "sprint":
        return asyncio.run(cmd_sprint(args, orchestrator))
    return asyncio.run(cmd_generate(args, orchestrator))


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)

    app_dir = setup_application_paths()

    try:
        config_dir = Path(args.config_dir).expanduser() if args.config_dir else None
        config_manager = ConfigManager(config_dir=config_dir)
    except ReportError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger = initialize_logging(args, app_dir, config_manager.get_app_config())

    try:
        return run(args, config_manager)

    except ReportError as e:
        logger.error(f"Application error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
