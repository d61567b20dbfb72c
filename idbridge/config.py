"""Configuration system for idbridge using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.idbridge] section (project-level)
3. ./idbridge.toml (project-level, explicit)
4. ~/.config/idbridge/config.toml (user-level, overrides project)
5. Environment variables (highest priority)

Environment variables use IDBRIDGE_ prefix with nested delimiter __.
Example: IDBRIDGE_FLOW__AUTH_TIMEOUT_SECONDS, IDBRIDGE_CACHE__BACKEND
"""

from __future__ import annotations

import os
import sys
import tomllib

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


#: Authority used when ``initialize`` is called without one.
DEFAULT_AUTHORITY = "https://login.microsoftonline.com/common"


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    idbridge_toml = Path("idbridge.toml")
    if idbridge_toml.exists():
        files.append(idbridge_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "idbridge" / "config.toml"
    else:
        user_config = Path("~/.config/idbridge/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("IDBRIDGE_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            continue

        # Handle pyproject.toml [tool.idbridge] section
        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("idbridge", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class ClientSettings(BaseSettings):
    """Default client identity, used by the CLI when no flags are given.

    Environment prefix: IDBRIDGE_CLIENT__
    Example: IDBRIDGE_CLIENT__CLIENT_ID=00000000-0000-0000-0000-000000000000
    """

    model_config = SettingsConfigDict(
        env_prefix="IDBRIDGE_CLIENT__",
        extra="ignore",
    )

    client_id: str = Field(default="", description="Application (client) ID")
    authority: str = Field(
        default=DEFAULT_AUTHORITY,
        description="Identity provider authority URL (tenant endpoint)",
    )
    redirect_uri: str = Field(
        default="http://localhost:8400/callback",
        description="Redirect URI registered for the application",
    )


class FlowSettings(BaseSettings):
    """Interactive authorization flow settings.

    Environment prefix: IDBRIDGE_FLOW__
    Example: IDBRIDGE_FLOW__SINGLE_ACCOUNT=false
    """

    model_config = SettingsConfigDict(
        env_prefix="IDBRIDGE_FLOW__",
        extra="ignore",
    )

    auth_timeout_seconds: float = Field(
        default=300.0,
        ge=1.0,
        description="Maximum seconds to wait for the authorization redirect",
    )
    single_account: bool = Field(
        default=True,
        description="Remove every known account before an interactive sign-in",
    )
    extra_scopes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["openid", "profile", "offline_access"],
        description="OIDC scopes always added to the authorization request",
    )
    prompt: Literal["", "login", "select_account", "consent", "none"] = Field(
        default="select_account",
        description="OIDC prompt parameter (empty to omit)",
    )
    validate_id_token: bool = Field(
        default=False,
        description="Verify ID token signatures against the authority JWKS",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout for token endpoint requests",
    )

    @field_validator("extra_scopes", mode="before")
    @classmethod
    def _parse_extra_scopes(cls, v: Any) -> list[str]:
        """Accept a space/comma-separated string (from env var) or a list."""
        if isinstance(v, str):
            v = [s.strip() for s in v.replace(",", " ").split() if s.strip()]
        if not isinstance(v, list):
            msg = f"extra_scopes must be a list or separated string, got {type(v).__name__}"
            raise TypeError(msg)
        return v


class CacheSettings(BaseSettings):
    """Token cache settings.

    Environment prefix: IDBRIDGE_CACHE__
    Example: IDBRIDGE_CACHE__BACKEND=keyring
    """

    model_config = SettingsConfigDict(
        env_prefix="IDBRIDGE_CACHE__",
        extra="ignore",
    )

    backend: Literal["memory", "keyring"] = Field(
        default="memory",
        description="Token storage backend: memory or keyring",
    )
    keyring_service_name: str = Field(
        default="idbridge-tokens",
        description="Service name used for OS keyring entries",
    )
    refresh_buffer_seconds: int = Field(
        default=0,
        ge=0,
        description="Treat access tokens as expired this many seconds early",
    )


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: IDBRIDGE_LOG__
    Example: IDBRIDGE_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="IDBRIDGE_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class ChannelSettings(BaseSettings):
    """Method channel settings.

    Environment prefix: IDBRIDGE_CHANNEL__
    Example: IDBRIDGE_CHANNEL__MAX_WORKERS=2
    """

    model_config = SettingsConfigDict(
        env_prefix="IDBRIDGE_CHANNEL__",
        extra="ignore",
    )

    max_workers: int = Field(
        default=4,
        ge=1,
        description="Worker threads for acquireToken, acquireTokenSilent and logout",
    )


# (display name, attribute) pairs rendered by show() and to_env()
_SECTIONS: tuple[tuple[str, str], ...] = (
    ("Client", "client"),
    ("Interactive Flow", "flow"),
    ("Token Cache", "cache"),
    ("Logging", "log"),
    ("Method Channel", "channel"),
)


class IdBridgeSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: IDBRIDGE_

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.idbridge] section
    3. ./idbridge.toml (project-level)
    4. ~/.config/idbridge/config.toml (user-level, overrides project)
    5. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="IDBRIDGE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    client: ClientSettings = Field(default_factory=ClientSettings)
    flow: FlowSettings = Field(default_factory=FlowSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    channel: ChannelSettings = Field(default_factory=ChannelSettings)

    def __init__(self, **data: Any) -> None:
        # Explicit keyword data takes precedence over TOML files
        merged = _deep_merge(_load_toml_config(), data)
        super().__init__(**merged)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment variables override TOML (which arrives as init data)
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# idbridge Environment Variables",
            "# Generated by: idbridge config --env",
            "",
        ]
        all_data = self.model_dump()
        for _, attr_name in _SECTIONS:
            for field_name, field_value in all_data.get(attr_name, {}).items():
                env_name = f"IDBRIDGE_{attr_name.upper()}__{field_name.upper()}"
                if isinstance(field_value, list):
                    value_str = ",".join(str(v) for v in field_value)
                elif isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                else:
                    value_str = str(field_value)
                lines.append(f'export {env_name}="{value_str}"')
        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["idbridge Configuration", "=" * 60, ""]
        all_data = self.model_dump()
        for display_name, attr_name in _SECTIONS:
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in all_data.get(attr_name, {}).items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:24} = {value_str}")
        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> IdBridgeSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return IdBridgeSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> IdBridgeSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
