"""Configuration settings using Pydantic for validation."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import os
import re


class AriConfig(BaseModel):
    """Asterisk ARI connection configuration."""
    scheme: str = Field(default="ws", description="WebSocket scheme: ws or wss")
    host: str = Field(default="localhost:8088", description="ARI host[:port]")
    base_path: str = Field(default="/ari", description="ARI base path; events live under <base_path>/events")
    username: Optional[str] = Field(default=None, description="ARI user")
    password: Optional[str] = Field(default=None, description="ARI password")
    api_key: Optional[str] = Field(default=None, description="Explicit api_key; defaults to username:password")
    applications: List[str] = Field(default_factory=lambda: ["ari-app"], description="Stasis applications to subscribe to")
    subscribe_all: bool = Field(default=False, description="Subscribe to all Asterisk events")
    user_agent: str = Field(default="ARI_Client", description="User-Agent header sent on dial")
    default_headers: Dict[str, str] = Field(default_factory=dict, description="Extra headers sent on dial")

    # Transport tuning
    open_timeout_seconds: float = Field(default=10.0, description="Handshake timeout")
    ping_interval_seconds: Optional[float] = Field(default=20.0, description="Keepalive ping interval, None disables")
    ping_timeout_seconds: Optional[float] = Field(default=20.0, description="Keepalive pong timeout")
    close_timeout_seconds: float = Field(default=10.0, description="Closing handshake timeout")
    max_message_size: int = Field(default=2**20, description="Maximum frame size in bytes")

    @field_validator('scheme')
    @classmethod
    def validate_scheme(cls, v):
        if v not in ['ws', 'wss']:
            raise ValueError("Scheme must be 'ws' or 'wss'")
        return v

    @field_validator('applications', mode='before')
    @classmethod
    def split_applications(cls, v):
        if isinstance(v, str):
            v = [part.strip() for part in v.split(',')]
        if isinstance(v, list):
            v = [app for app in v if app]
        return v

    @field_validator('applications')
    @classmethod
    def require_application(cls, v):
        if not v:
            raise ValueError("At least one application must be configured")
        return v

    def credentials(self) -> List[str]:
        """Values sent in the api_key query parameter."""
        if self.api_key:
            return [self.api_key]
        if self.username and self.password:
            return [f"{self.username}:{self.password}"]
        return []


class ReconnectConfig(BaseModel):
    """Reconnect backoff configuration."""
    initial_delay_seconds: float = Field(default=1.0, gt=0, description="Backoff floor")
    max_delay_seconds: float = Field(default=60.0, gt=0, description="Backoff ceiling")
    multiplier: float = Field(default=2.0, ge=1.0, description="Backoff multiplier")
    jitter: bool = Field(default=False, description="Add ±25% jitter to backoff")

    @model_validator(mode='after')
    def validate_bounds(self):
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination")


class StreamSettings(BaseSettings):
    """Main event stream service settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    service_name: str = Field(default="ari-events", description="Service name")
    environment: str = Field(default="local", description="Environment: local, dev, prod")

    ari: AriConfig = Field(default_factory=AriConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['local', 'dev', 'prod']:
            raise ValueError("Environment must be 'local', 'dev', or 'prod'")
        return v


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in configuration objects.

    Supports syntax:
    - ${VAR_NAME} - Required variable (raises error if not found)
    - ${VAR_NAME:-default} - Optional variable with default value

    Raises:
        ValueError: If required environment variable is not found
    """
    if isinstance(obj, dict):
        return {key: substitute_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace_env_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)

            var_name = var_expr.strip()
            value = os.getenv(var_name)
            if value is None:
                raise ValueError(f"Required environment variable '{var_name}' is not set")
            return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def load_settings(config_file: Optional[str] = None) -> StreamSettings:
    """
    Load settings from a YAML config file and environment variables.

    Values from the file win over environment variables; use ${VAR} in the
    file to pull a value from the environment explicitly.

    Args:
        config_file: Path to YAML configuration file

    Returns:
        StreamSettings: Validated configuration object

    Raises:
        ValueError: If required environment variables are missing
        FileNotFoundError: If config file doesn't exist
    """
    if config_file and os.path.exists(config_file):
        import yaml

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        config_data = substitute_env_vars(raw_config)
        return StreamSettings(**config_data)

    elif config_file:
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    return StreamSettings()
