"""Input validation utilities for login and report forms."""

import re
import unicodedata
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .exceptions import ValidationError


class InputValidator:
    """Input validation and sanitization."""

    # Self-hosted Jira is frequently served over plain http on intranets
    VALID_SCHEMES = ["http", "https"]

    HOSTNAME_PATTERN = (
        r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?)*$"
    )

    @staticmethod
    def validate_jira_url(url: str) -> bool:
        """Validate a Jira base URL."""
        if not url or not url.strip():
            raise ValidationError("Jira base URL cannot be empty.")

        parsed = urlparse(url.strip())

        if parsed.scheme.lower() not in InputValidator.VALID_SCHEMES:
            raise ValidationError(
                "Please enter a valid Jira URL (e.g. https://jira.example.com)."
            )

        if not parsed.hostname or not re.match(
            InputValidator.HOSTNAME_PATTERN, parsed.hostname
        ):
            raise ValidationError("URL must have a valid hostname")

        return True

    @staticmethod
    def is_cloud_url(url: str) -> bool:
        """Whether the URL points at an Atlassian Cloud site."""
        hostname = urlparse((url or "").strip()).hostname or ""
        return hostname.lower().endswith((".atlassian.net", ".jira.com"))

    @staticmethod
    def validate_login_inputs(username: Optional[str], url: Optional[str]) -> bool:
        """Validate login form inputs (user/email + Jira base URL)."""
        if not username or not username.strip():
            raise ValidationError("User Email cannot be empty.")

        if not url or not url.strip():
            raise ValidationError("Jira base URL cannot be empty.")

        InputValidator.validate_jira_url(url)
        return True

    @staticmethod
    def validate_secret(secret: Optional[str]) -> bool:
        """Validate the API token / password field."""
        if not secret or not secret.strip():
            raise ValidationError("Please enter your API token or password.")

        if any(ch in secret for ch in "\r\n\x00"):
            raise ValidationError("Credential contains invalid characters")

        return True

    @staticmethod
    def validate_report_inputs(
        sprint_name: Optional[str],
        member_name: Optional[str],
        project_name: Optional[str],
    ) -> bool:
        """Validate required fields for report generation."""
        if not sprint_name or not sprint_name.strip():
            raise ValidationError("Sprint name cannot be empty.")

        if not member_name or not member_name.strip():
            raise ValidationError("Member name cannot be empty.")

        if not project_name or not project_name.strip():
            raise ValidationError("Project name cannot be empty.")

        return True

    @staticmethod
    def validate_issue_types(issue_types: List[str]) -> bool:
        """Validate a list of issue type names."""
        if not isinstance(issue_types, list):
            raise ValidationError("Issue types must be a list")

        for issue_type in issue_types:
            if not isinstance(issue_type, str) or not issue_type.strip():
                raise ValidationError(f"Invalid issue type: {issue_type!r}")
            if len(issue_type) > 100:
                raise ValidationError("Issue type name too long")

        return True

    @staticmethod
    def sanitize_filename(filename: str, replacement: str = "_") -> str:
        """Replace characters that are not valid in file names."""
        if not filename:
            return ""

        filename = unicodedata.normalize("NFKC", filename)
        filename = re.sub(r'[<>:"/\\|?*\x00-\x1f\x7f]', replacement, filename)

        return filename.strip()[:200]

    @staticmethod
    def validate_config_dict(config: Dict[str, Any]) -> bool:
        """Validate configuration dictionary."""
        if not isinstance(config, dict):
            raise ValidationError("Configuration must be a dictionary")

        for section in ("jira", "report", "app"):
            if section in config and not isinstance(config[section], dict):
                raise ValidationError(f"{section} configuration must be a dictionary")

        jira_config = config.get("jira", {})
        if jira_config.get("url"):
            InputValidator.validate_jira_url(jira_config["url"])

        issue_types = config.get("report", {}).get("issue_types")
        if issue_types is not None:
            InputValidator.validate_issue_types(issue_types)

        return True
