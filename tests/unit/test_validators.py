"""Unit tests for input validation."""

import pytest

from sprint_report.utils.exceptions import ValidationError
from sprint_report.utils.validators import InputValidator


class TestLoginInputs:
    def test_valid(self):
        assert InputValidator.validate_login_inputs(
            "me@example.com", "https://jira.example.com"
        )

    def test_plain_http_is_accepted(self):
        assert InputValidator.validate_jira_url("http://jira.intranet.local:8080")

    @pytest.mark.parametrize(
        "username, url, message",
        [
            ("", "https://jira.example.com", "User Email cannot be empty."),
            ("   ", "https://jira.example.com", "User Email cannot be empty."),
            ("me@example.com", "", "Jira base URL cannot be empty."),
        ],
    )
    def test_empty_fields(self, username, url, message):
        with pytest.raises(ValidationError) as exc_info:
            InputValidator.validate_login_inputs(username, url)

        assert str(exc_info.value) == message

    def test_url_without_scheme(self):
        with pytest.raises(ValidationError, match="valid Jira URL"):
            InputValidator.validate_jira_url("jira.example.com")

    def test_cloud_detection(self):
        assert InputValidator.is_cloud_url("https://acme.atlassian.net/")
        assert not InputValidator.is_cloud_url("https://jira.acme.com")
        assert not InputValidator.is_cloud_url("")


class TestSecret:
    def test_empty(self):
        with pytest.raises(ValidationError) as exc_info:
            InputValidator.validate_secret("  ")

        assert str(exc_info.value) == "Please enter your API token or password."

    def test_control_characters(self):
        with pytest.raises(ValidationError):
            InputValidator.validate_secret("token\nInjected: header")


class TestReportInputs:
    @pytest.mark.parametrize(
        "sprint, member, project, message",
        [
            ("", "Jane", "AIRPMD", "Sprint name cannot be empty."),
            ("73", " ", "AIRPMD", "Member name cannot be empty."),
            ("73", "Jane", None, "Project name cannot be empty."),
        ],
    )
    def test_required_fields(self, sprint, member, project, message):
        with pytest.raises(ValidationError) as exc_info:
            InputValidator.validate_report_inputs(sprint, member, project)

        assert str(exc_info.value) == message

    def test_issue_types(self):
        assert InputValidator.validate_issue_types(["Bug", "Story"])
        assert InputValidator.validate_issue_types([])

        with pytest.raises(ValidationError):
            InputValidator.validate_issue_types("Bug")
        with pytest.raises(ValidationError):
            InputValidator.validate_issue_types(["Bug", ""])


class TestSanitizeFilename:
    def test_reserved_characters_replaced(self):
        assert InputValidator.sanitize_filename('Sprint 7/8: "final"') == "Sprint 7_8_ _final_"

    def test_empty(self):
        assert InputValidator.sanitize_filename("") == ""

    def test_length_is_capped(self):
        assert len(InputValidator.sanitize_filename("x" * 500)) == 200
