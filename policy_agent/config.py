"""Agent configuration pulled from environment variables via pydantic."""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")

CDSSO_PATH = "/agent/cdsso"
NOTIFICATION_PATH = "/agent/notifications"


class AgentConfig(BaseSettings):
    """Immutable configuration for a PolicyAgent; read once, never mutated."""
    model_config = SettingsConfigDict(env_prefix="AM_AGENT_", extra="ignore", frozen=True)

    server_url: str = "http://openam.example.com:8080/openam"
    private_ip: str | None = None
    username: str | None = None
    password: str | None = None
    realm: str = "/"
    app_url: str | None = None
    notification_path: str = NOTIFICATION_PATH
    cdsso_path: str = CDSSO_PATH
    notifications_enabled: bool = False
    let_client_handle_errors: bool = False
    session_cache_ttl_seconds: float = 300
    session_redis_url: str | None = None
    request_timeout_seconds: float = 5.0
    reauth_attempts: int = 5
    log_level: str = "INFO"

    @field_validator("server_url", "app_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        """Normalize base URLs to avoid double slashes."""
        return v.rstrip("/") if v else v

    @field_validator("notification_path", "cdsso_path", mode="after")
    @classmethod
    def leading_slash(cls, v: str) -> str:
        """Route paths are always absolute."""
        return v if v.startswith("/") else f"/{v}"


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {AgentConfig().model_dump_json(indent=4, exclude={'password'})}")
