"""Configuration management with secure storage and validation."""

import json
import os
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..utils.exceptions import ConfigurationError, ValidationError
from ..utils.logging_config import get_logger
from ..utils.validators import InputValidator
from .security_manager import SecurityManager

SECRET_ENV_VAR = "SPRINT_REPORT_SECRET"

DEFAULT_ISSUE_TYPES = ["Bug", "Improvement", "Story"]


@dataclass
class JiraConfig:
    """Jira connection settings."""

    url: str = ""
    username: str = ""
    secret: str = ""
    auth_scheme: str = "basic"
    remember_me: bool = False
    rate_limit: int = 100
    timeout: int = 20
    validate_timeout: int = 15
    search_timeout: int = 60


@dataclass
class ReportConfig:
    """Remembered report form values."""

    project: str = ""
    sprint: str = ""
    member_name: str = ""
    issue_types: List[str] = field(default_factory=lambda: list(DEFAULT_ISSUE_TYPES))
    template_path: str = ""
    output_dir: str = ""
    output_format: str = "docx"


@dataclass
class AppConfig:
    """Application configuration."""

    log_level: str = "WARNING"
    log_file: str = ""


@dataclass
class Configuration:
    """Main configuration container."""

    jira: JiraConfig = field(default_factory=JiraConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    app: AppConfig = field(default_factory=AppConfig)
    version: str = "1.0.0"
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    updated_at: str = field(default_factory=lambda: datetime.now().isoformat())


def _known_fields(cls: type, data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys the dataclass does not declare (older/newer config files)."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


class ConfigManager:
    """Manages application configuration with secure storage."""

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        security_manager: Optional[SecurityManager] = None,
    ):
        self.logger = get_logger(__name__)

        self.config_dir = config_dir or Path.home() / ".sprint_report"
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file = self.config_dir / "config.json"

        self._security_manager = security_manager

        self._config = Configuration()
        self._load_configuration()

    @property
    def security_manager(self) -> SecurityManager:
        """Created lazily so that plain config reads never touch the keyring."""
        if self._security_manager is None:
            self._security_manager = SecurityManager(app_dir=self.config_dir)
        return self._security_manager

    @security_manager.setter
    def security_manager(self, manager: SecurityManager) -> None:
        self._security_manager = manager

    def _load_configuration(self) -> None:
        """Load configuration from file."""
        try:
            if self.config_file.exists():
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config_data = json.load(f)

                InputValidator.validate_config_dict(config_data)
                self._update_config_from_dict(config_data)

                self.logger.info(f"Configuration loaded from {self.config_file}")
            else:
                self._save_configuration()
                self.logger.info("Default configuration created")

        except (ConfigurationError, ValidationError):
            raise
        except Exception as e:
            self.logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _update_config_from_dict(self, config_data: Dict[str, Any]) -> None:
        """Update configuration object from dictionary."""
        try:
            if "jira" in config_data:
                self._config.jira = JiraConfig(
                    **_known_fields(JiraConfig, config_data["jira"])
                )

            if "report" in config_data:
                self._config.report = ReportConfig(
                    **_known_fields(ReportConfig, config_data["report"])
                )

            if "app" in config_data:
                self._config.app = AppConfig(
                    **_known_fields(AppConfig, config_data["app"])
                )

            self._config.version = config_data.get("version", self._config.version)
            self._config.created_at = config_data.get(
                "created_at", self._config.created_at
            )
            self._config.updated_at = datetime.now().isoformat()

        except Exception as e:
            raise ConfigurationError(f"Failed to update configuration: {e}")

    def _save_configuration(self) -> None:
        """Save configuration to file."""
        try:
            self._config.updated_at = datetime.now().isoformat()

            config_dict = self._sanitize_config_for_storage(asdict(self._config))

            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(config_dict, f, indent=2)

            self.config_file.chmod(0o600)

            self.logger.info(f"Configuration saved to {self.config_file}")

        except Exception as e:
            self.logger.error(f"Failed to save configuration: {e}")
            raise ConfigurationError(f"Failed to save configuration: {e}")

    def _sanitize_config_for_storage(
        self, config_dict: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Remove sensitive data from configuration before storage."""
        sanitized = config_dict.copy()

        # The secret is stored encrypted in the keyring, never in the file
        if "jira" in sanitized:
            sanitized["jira"] = dict(sanitized["jira"])
            sanitized["jira"].pop("secret", None)

        return sanitized

    def get_config(self) -> Configuration:
        """Get current configuration."""
        return self._config

    def get_jira_config(self) -> JiraConfig:
        """Get Jira configuration with the secret loaded.

        Resolution order: in-memory value, ``SPRINT_REPORT_SECRET``, keyring.
        """
        config = self._config.jira

        if config.secret:
            return config

        env_secret = os.environ.get(SECRET_ENV_VAR)
        if env_secret:
            return replace(config, secret=env_secret)

        if config.remember_me and config.username:
            stored = self.retrieve_credential("jira", config.username)
            if stored:
                return replace(config, secret=stored)

        return config

    def get_report_config(self) -> ReportConfig:
        """Get report form defaults."""
        return self._config.report

    def get_app_config(self) -> AppConfig:
        """Get application settings."""
        return self._config.app

    def update_jira_config(self, **kwargs) -> None:
        """Update Jira configuration.

        A ``secret`` is kept in memory for the session; it is written to the
        keyring only when ``remember_me`` is set, and removed otherwise.
        """
        try:
            if kwargs.get("url"):
                InputValidator.validate_jira_url(kwargs["url"])
                kwargs["url"] = kwargs["url"].strip().rstrip("/")

            if "auth_scheme" in kwargs and kwargs["auth_scheme"] not in (
                "basic",
                "bearer",
            ):
                raise ConfigurationError(
                    f"Unknown auth scheme: {kwargs['auth_scheme']}"
                )

            secret = kwargs.pop("secret", None)

            for key, value in kwargs.items():
                if hasattr(self._config.jira, key):
                    setattr(self._config.jira, key, value)

            jira = self._config.jira
            if secret:
                jira.secret = secret
                if jira.remember_me and jira.username:
                    self.store_credential("jira", jira.username, secret)

            if not jira.remember_me and jira.username:
                self.delete_credential("jira", jira.username)

            self._save_configuration()
            self.logger.info(f"Jira configuration updated: {sorted(kwargs)}")

        except (ConfigurationError, ValidationError):
            raise
        except Exception as e:
            self.logger.error(f"Failed to update Jira configuration: {e}")
            raise ConfigurationError(f"Failed to update Jira configuration: {e}")

    def update_report_config(self, **kwargs) -> None:
        """Update remembered report form values."""
        try:
            if "issue_types" in kwargs:
                InputValidator.validate_issue_types(kwargs["issue_types"])

            if "output_format" in kwargs and kwargs["output_format"] not in (
                "docx",
                "pdf",
                "markdown",
            ):
                raise ConfigurationError(
                    f"Unsupported output format: {kwargs['output_format']}"
                )

            for key, value in kwargs.items():
                if hasattr(self._config.report, key):
                    setattr(self._config.report, key, value)

            self._save_configuration()
            self.logger.info("Report configuration updated")

        except (ConfigurationError, ValidationError):
            raise
        except Exception as e:
            self.logger.error(f"Failed to update report configuration: {e}")
            raise ConfigurationError(f"Failed to update report configuration: {e}")

    def store_credential(self, service: str, username: str, value: str) -> None:
        """Store sensitive credential securely."""
        try:
            self.security_manager.store_credential(service, username, value)
            self.logger.info(f"Credential stored for {service}")

        except Exception as e:
            self.logger.error(f"Failed to store credential: {e}")
            raise ConfigurationError(f"Failed to store credential: {e}")

    def retrieve_credential(self, service: str, username: str) -> Optional[str]:
        """Retrieve sensitive credential securely."""
        try:
            return self.security_manager.retrieve_credential(service, username)

        except Exception as e:
            self.logger.error(f"Failed to retrieve credential: {e}")
            return None

    def delete_credential(self, service: str, username: str) -> None:
        """Delete sensitive credential."""
        try:
            self.security_manager.delete_credential(service, username)

        except Exception as e:
            self.logger.error(f"Failed to delete credential: {e}")
            raise ConfigurationError(f"Failed to delete credential: {e}")

    def validate_configuration(self) -> bool:
        """Validate current configuration."""
        try:
            jira_config = self.get_jira_config()
            InputValidator.validate_login_inputs(jira_config.username, jira_config.url)
            InputValidator.validate_secret(jira_config.secret)
            InputValidator.validate_issue_types(self._config.report.issue_types)

            self.logger.info("Configuration validation passed")
            return True

        except Exception as e:
            self.logger.error(f"Configuration validation failed: {e}")
            return False

    def is_configured(self) -> bool:
        """Check if a Jira connection has been set up."""
        jira_config = self._config.jira
        return bool(jira_config.url and jira_config.username)
