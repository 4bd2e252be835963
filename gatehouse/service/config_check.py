from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from gatehouse.config import Settings
from gatehouse.logging import get_logger
from gatehouse.service.errors import ConfigurationError

logger = get_logger(__name__)

MIN_SECRET_LENGTH = 32
MIN_PORTAL_KEY_LENGTH = 16
_DEFAULT_VALUES = {"admin", "portal", "key", "default", "secret", "changeme", "password"}


@dataclass
class AdminConfigReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    secret_set: bool = False
    portal_key_set: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def status(self) -> Dict[str, object]:
        """Summary safe to expose from health checks."""

        return {
            "configured": self.is_valid,
            "session_secret_set": self.secret_set,
            "portal_key_set": self.portal_key_set,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
        }


def check_admin_config(settings: Settings) -> AdminConfigReport:
    secret = settings.admin_session_secret
    portal_key = settings.admin_portal_key
    report = AdminConfigReport(secret_set=bool(secret), portal_key_set=bool(portal_key))

    if not secret:
        report.errors.append("ADMIN_SESSION_SECRET environment variable is required")
    elif len(secret) < MIN_SECRET_LENGTH:
        report.warnings.append(
            f"ADMIN_SESSION_SECRET should be at least {MIN_SECRET_LENGTH} characters long"
        )

    if not portal_key:
        report.errors.append("ADMIN_PORTAL_KEY environment variable is required")
    elif len(portal_key) < MIN_PORTAL_KEY_LENGTH:
        report.warnings.append(
            f"ADMIN_PORTAL_KEY should be at least {MIN_PORTAL_KEY_LENGTH} characters long"
        )

    if settings.is_production:
        if secret and secret.lower() in _DEFAULT_VALUES:
            report.errors.append("default admin session secrets are not allowed in production")
        if portal_key and portal_key.lower() in _DEFAULT_VALUES:
            report.errors.append("default portal keys are not allowed in production")
    return report


def validate_and_log_admin_config(settings: Settings) -> AdminConfigReport:
    """Log the admin configuration report; abort in production when it is invalid."""

    report = check_admin_config(settings)
    if not report.is_valid:
        logger.error(
            "admin_config_invalid",
            app_env=settings.app_env.value,
            errors=report.errors,
        )
        if settings.is_production:
            raise ConfigurationError(
                "admin configuration invalid", detail={"errors": report.errors}
            )
    else:
        logger.info("admin_config_valid", warning_count=len(report.warnings))
    for warning in report.warnings:
        logger.warning("admin_config_warning", message=warning)
    return report


__all__ = ["AdminConfigReport", "check_admin_config", "validate_and_log_admin_config"]
