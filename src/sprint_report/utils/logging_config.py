"""Logging setup with credential redaction and an audit event stream.

Plain module loggers (``get_logger``) go through stdlib handlers; audit
events (authentication, scheme fallback, sprint resolution, credential
storage, workflow runs) go through structlog as JSON. Both paths strip
Jira credentials before anything is written.
"""

import logging
import re
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

QUIET_LOGGERS = ("aiohttp", "asyncio", "keyring", "reportlab")

REDACTED = "[REDACTED]"


class Redactor:
    """Removes the credentials this tool handles from log text and fields."""

    # Authorization header values as built by the Jira client
    _AUTH_HEADER = re.compile(r"\b(Basic|Bearer)\s+[A-Za-z0-9+/=._~\-]{6,}", re.IGNORECASE)
    # Atlassian Cloud API tokens
    _API_TOKEN = re.compile(r"\bATATT[0-9A-Za-z_\-=]{10,}")
    _KEY_VALUE = re.compile(
        r"\b(password|passwd|secret|api_token|token)([\"']?\s*[:=]\s*[\"']?)[^\s\"',;&]+",
        re.IGNORECASE,
    )
    # keep the first character and the domain of an email
    _EMAIL = re.compile(r"\b([A-Za-z0-9])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")

    SENSITIVE_KEYS = frozenset(
        {"authorization", "password", "secret", "token", "api_token", "credential"}
    )

    @classmethod
    def redact_text(cls, text: str) -> str:
        if not text:
            return text
        text = cls._AUTH_HEADER.sub(lambda m: f"{m.group(1)} {REDACTED}", text)
        text = cls._API_TOKEN.sub(REDACTED, text)
        text = cls._KEY_VALUE.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", text)
        return cls._EMAIL.sub(r"\1***@\2", text)

    @classmethod
    def redact(cls, value: Any) -> Any:
        """Redact strings, and whole values of credential-named keys."""
        if isinstance(value, str):
            return cls.redact_text(value)
        if isinstance(value, dict):
            return {
                k: REDACTED
                if isinstance(k, str) and k.lower() in cls.SENSITIVE_KEYS
                else cls.redact(v)
                for k, v in value.items()
            }
        if isinstance(value, (list, tuple)):
            return type(value)(cls.redact(v) for v in value)
        return value


class RedactingFilter(logging.Filter):
    """Handler filter that rewrites each record with credentials removed."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = Redactor.redact_text(record.getMessage())
        record.args = None
        return True


def _redact_event(_logger: Any, _method: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    return Redactor.redact(event_dict)


def _attach(handler: logging.Handler, fmt: str, level: int, redact: bool) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    if redact:
        handler.addFilter(RedactingFilter())
    logging.getLogger().addHandler(handler)


def setup_logging(
    level: str = "WARNING",
    log_file: Optional[str] = None,
    console: bool = True,
    redact: bool = True,
) -> None:
    """Configure the root logger and the audit event pipeline.

    Console output goes to stderr so that command output on stdout stays
    clean. The log file gets function and line numbers as well.
    """
    root = logging.getLogger()
    root.handlers.clear()
    log_level = getattr(logging, level.upper(), logging.WARNING)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    if redact:
        processors.append(_redact_event)
    processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if console:
        _attach(
            logging.StreamHandler(sys.stderr),
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            log_level,
            redact,
        )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _attach(
            logging.FileHandler(log_path, encoding="utf-8"),
            "%(asctime)s %(levelname)s %(name)s %(funcName)s:%(lineno)d: %(message)s",
            log_level,
            redact,
        )

    root.setLevel(log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class SecurityLogger:
    """Audit events of a report run, emitted as structured records."""

    def __init__(self, name: str = "sprint_report.audit") -> None:
        self.logger = structlog.get_logger(name)

    def event(self, name: str, severity: str = "info", **fields: Any) -> None:
        log_method = getattr(self.logger, severity.lower(), self.logger.info)
        log_method(name, **Redactor.redact(fields))

    def authentication(
        self, username: str, success: bool, **fields: Any
    ) -> None:
        """Outcome of a credential check against ``/myself``."""
        self.event(
            "authentication",
            severity="info" if success else "warning",
            username=username,
            success=success,
            **fields,
        )

    def scheme_fallback(
        self, endpoint: str, rejected: str, status_code: int, next_scheme: Optional[str]
    ) -> None:
        """A request was refused under one auth scheme and retried (or not)."""
        self.event(
            "auth_scheme_fallback",
            severity="warning",
            endpoint=endpoint,
            rejected_scheme=rejected,
            status_code=status_code,
            next_scheme=next_scheme,
        )

    def search(self, api_version: int, scheme: str, results: int) -> None:
        self.event("search", api_version=api_version, scheme=scheme, results=results)

    def sprint_resolved(
        self,
        project: str,
        sprint_text: str,
        sprint_id: Optional[int],
        board_id: Optional[int] = None,
        source: str = "none",
        key_count: int = 0,
    ) -> None:
        """Which sprint was picked for typed text, and how.

        ``source`` is ``sprint_report``, ``most_recent``, ``loose`` or
        ``none``.
        """
        self.event(
            "sprint_resolved",
            project=project,
            sprint_text=sprint_text,
            sprint_id=sprint_id,
            board_id=board_id,
            source=source,
            key_count=key_count,
        )

    def credential(
        self,
        action: str,
        username: Optional[str] = None,
        success: bool = True,
        error: Optional[str] = None,
    ) -> None:
        """Keyring or encryption activity for the remembered secret."""
        self.event(
            f"credential_{action}",
            severity="info" if success else "error",
            username=username,
            success=success,
            error=error,
        )

    def workflow(self, state: str, **fields: Any) -> None:
        self.event(
            f"workflow_{state}",
            severity="error" if state == "failed" else "info",
            **fields,
        )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_security_logger() -> SecurityLogger:
    return SecurityLogger()
