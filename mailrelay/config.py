from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env"

PERMISSION_TREE_SOURCES = ("idol", "file")


class ConfigurationError(Exception):
    """Raised when the service cannot start with the supplied settings."""

    def __init__(self, message: str, issues: list[str] | None = None):
        super().__init__(message)
        self.issues = issues or []


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Mailjet settings
    MAILJET_API_KEY: str | None = None
    MAILJET_SECRET_KEY: str | None = None
    MAILJET_API_BASE_URL: str = "https://api.mailjet.com"

    # IDOL (Haven OnDemand) settings
    IDOL_API_KEY: str | None = None
    IDOL_API_BASE_URL: str = "https://api.havenondemand.com"
    APP_EMAILS_IDOL_INDEX: str = "emails"

    # Permission tree settings
    PERMISSION_TREE_SOURCE: str = "idol"
    PERMISSION_TREE_FILE: str | None = None
    RECIPIENTS_IDOL_INDEX: str = "recipients"
    RECIPIENTS_GROUP_FIELD: str = "store"
    RECIPIENTS_MEMBER_FIELD: str = "email"
    RECIPIENTS_MAX_RESULTS: int = 10000

    # Uploads are staged here before being attached
    UPLOAD_DIR: str = "uploads"

    REQUEST_TIMEOUT_SECONDS: float = 30.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def upload_path(self) -> Path:
        """Absolute directory for staged attachment files."""
        path = Path(self.UPLOAD_DIR)
        if not path.is_absolute():
            path = ENV_PATH.parent / path
        return path


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()


def validate_settings(settings: Settings) -> Settings:
    """
    Check that the settings are complete enough to serve requests.

    Run once at startup. Mailjet credentials are mandatory; IDOL
    credentials are mandatory whenever IDOL backs the permission tree.

    Raises:
        ConfigurationError: listing every problem found
    """
    issues = []

    if not settings.MAILJET_API_KEY or not settings.MAILJET_SECRET_KEY:
        issues.append("MAILJET_API_KEY and MAILJET_SECRET_KEY are required")

    if settings.PERMISSION_TREE_SOURCE not in PERMISSION_TREE_SOURCES:
        issues.append(
            f"PERMISSION_TREE_SOURCE must be one of {', '.join(PERMISSION_TREE_SOURCES)}"
        )
    elif settings.PERMISSION_TREE_SOURCE == "idol" and not settings.IDOL_API_KEY:
        issues.append("IDOL_API_KEY is required when PERMISSION_TREE_SOURCE is 'idol'")
    elif settings.PERMISSION_TREE_SOURCE == "file" and not settings.PERMISSION_TREE_FILE:
        issues.append("PERMISSION_TREE_FILE is required when PERMISSION_TREE_SOURCE is 'file'")

    if issues:
        raise ConfigurationError("Invalid configuration: " + "; ".join(issues), issues=issues)

    return settings
