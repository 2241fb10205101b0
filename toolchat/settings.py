from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):
    # Read from OS env and optional .env file in project root.
    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment / mode
    environment: str = Field(
        "development",
        alias="APP_ENV",
        description="Current environment, e.g. development / production",
    )

    # Redis connection string
    redis_url: str = Field(
        "redis://localhost:6379/0",
        alias="REDIS_URL",
        description="Redis connection URL, e.g. 'redis://redis:6379/0'",
    )

    # Durable tool session records
    session_ttl_seconds: int = Field(
        1800,
        alias="SESSION_TTL_SECONDS",
        description="Idle TTL of a tool session record; refreshed on every turn",
        ge=60,
    )

    # Turn / upstream timeouts
    turn_timeout_seconds: float = Field(
        300.0,
        alias="TURN_TIMEOUT_SECONDS",
        description="Ceiling for the combined duration of all awaits within one turn",
        gt=0,
    )
    upstream_timeout: float = Field(
        120.0,
        alias="UPSTREAM_TIMEOUT",
        description="HTTP timeout (seconds) for model completion calls",
    )
    mcp_request_timeout: float = Field(
        30.0,
        alias="MCP_REQUEST_TIMEOUT",
        description="Timeout (seconds) for a single tool-provider JSON-RPC request",
    )

    # Reconnect behaviour for URL-style tool providers
    reconnect_attempts: int = Field(
        2,
        alias="RECONNECT_ATTEMPTS",
        description="Bounded number of reconnect attempts before degrading to stateless mode",
        ge=1,
        le=5,
    )
    reconnect_backoff_seconds: float = Field(
        0.5,
        alias="RECONNECT_BACKOFF_SECONDS",
        description="Delay between reconnect attempts",
        ge=0.0,
    )

    # Default model configuration
    llm_base_url: Optional[str] = Field(
        default=None,
        alias="LLM_BASE_URL",
        description="OpenAI-compatible base URL, e.g. https://api.openai.com/v1",
    )
    llm_api_key: Optional[str] = Field(
        default=None,
        alias="LLM_API_KEY",
        description="API key for the default model",
    )
    llm_model: str = Field("gpt-4o-mini", alias="LLM_MODEL")
    llm_temperature: float = Field(0.7, alias="LLM_TEMPERATURE", ge=0.0, le=2.0)
    llm_max_tokens: int = Field(1000, alias="LLM_MAX_TOKENS", ge=1)
    llm_config_cache_ttl_seconds: int = Field(
        300,
        alias="MODEL_CONFIG_CACHE_TTL_SECONDS",
        description="How long the resolved default model configuration is cached in-process",
        ge=0,
    )

    # Command-style tool providers
    mcp_allowed_commands_raw: str = Field(
        "node,npx,python,python3,uv,uvx,cargo",
        alias="MCP_ALLOWED_COMMANDS",
        description="Comma-separated executables that may be spawned as tool providers",
    )
    mcp_allowed_npm_packages_raw: str = Field(
        "*",
        alias="MCP_ALLOWED_NPM_PACKAGES",
        description="Comma-separated npm packages allowed for `npx -y <pkg>`; '*' allows all",
    )

    tool_result_preview_chars: int = Field(
        1000,
        alias="TOOL_RESULT_PREVIEW_CHARS",
        description="Maximum characters of a tool result shown in tool_state events",
        ge=50,
    )
    default_system_prompt: str = Field(
        "You are a professional AI assistant. Answer clearly and concisely, "
        "and provide useful information.",
        alias="DEFAULT_SYSTEM_PROMPT",
    )

    # Application log level for our toolchat logger.
    # Can be overridden via LOG_LEVEL env var, e.g. "DEBUG" while debugging.
    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Application log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_timezone: Optional[str] = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="Timezone name for log timestamps, e.g. 'Asia/Shanghai'. Defaults to system local time.",
    )
    log_dir: str = Field("logs", alias="LOG_DIR")

    # Shared API token required by clients when calling this service.
    api_auth_token: str = Field(
        "timeline",
        alias="APIPROXY_AUTH_TOKEN",
        description="Expected token after base64 decoding the Authorization header",
    )

    def get_allowed_commands(self) -> List[str]:
        return _split_csv(self.mcp_allowed_commands_raw)

    def get_allowed_npm_packages(self) -> Optional[List[str]]:
        """
        Return the npx package allowlist, or None when every package is allowed.
        """
        packages = _split_csv(self.mcp_allowed_npm_packages_raw)
        if not packages or "*" in packages:
            return None
        return packages


def _split_csv(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


settings = Settings()  # Reads from environment if available
