"""Configuration system for loginflow using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.loginflow] section (project-level)
3. ./loginflow.toml (project-level, explicit)
4. ~/.config/loginflow/config.toml (user-level, overrides project)
5. LOGINFLOW_CONFIG_FILE (explicit file)
6. Environment variables (highest priority)

Environment variables use LOGINFLOW_ prefix with nested delimiter __.
Example: LOGINFLOW_TIMEOUT__CODE, LOGINFLOW_SECRETS__BACKEND
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .types import COMMON_TENANT_ID, DEFAULT_ENVIRONMENT, DEFAULT_SCOPE, IdentityEnvironment


if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib  # type: ignore[import-not-found]
    except ImportError:
        tomllib = None


logger = logging.getLogger("loginflow.config")


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    project_toml = Path("loginflow.toml")
    if project_toml.exists():
        files.append(project_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "loginflow" / "config.toml"
    else:
        user_config = Path("~/.config/loginflow/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("LOGINFLOW_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    if tomllib is None:
        return {}

    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring invalid config file %s: %s", config_file, exc)
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("loginflow", {})

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


class EnvironmentSettings(BaseSettings):
    """Identity-provider environment settings.

    Environment prefix: LOGINFLOW_ENVIRONMENT__
    Example: LOGINFLOW_ENVIRONMENT__TENANT=contoso.onmicrosoft.com
    """

    model_config = SettingsConfigDict(
        env_prefix="LOGINFLOW_ENVIRONMENT__",
        extra="ignore",
    )

    name: str = DEFAULT_ENVIRONMENT.name
    authority_url: str = Field(
        default=DEFAULT_ENVIRONMENT.active_directory_endpoint_url,
        description="Authority base URL; the tenant is appended to it",
    )
    resource_id: str = DEFAULT_ENVIRONMENT.active_directory_resource_id
    management_url: str = DEFAULT_ENVIRONMENT.management_endpoint_url
    client_id: str = Field(
        default=DEFAULT_ENVIRONMENT.oauth_app_id,
        description="Application (client) ID registered with the provider",
    )
    tenant: str = COMMON_TENANT_ID
    scope: str = DEFAULT_SCOPE

    @field_validator("authority_url")
    @classmethod
    def _ensure_trailing_slash(cls, v: str) -> str:
        """The tenant is appended directly, so the base must end with '/'."""
        return v if v.endswith("/") else f"{v}/"

    def to_environment(self) -> IdentityEnvironment:
        """Build the IdentityEnvironment described by these settings."""
        return IdentityEnvironment(
            name=self.name,
            active_directory_endpoint_url=self.authority_url,
            active_directory_resource_id=self.resource_id,
            management_endpoint_url=self.management_url,
            oauth_app_id=self.client_id,
        )


class TimeoutSettings(BaseSettings):
    """Timeouts and poll intervals, in seconds.

    Environment prefix: LOGINFLOW_TIMEOUT__
    Example: LOGINFLOW_TIMEOUT__CODE=600
    """

    model_config = SettingsConfigDict(
        env_prefix="LOGINFLOW_TIMEOUT__",
        extra="ignore",
    )

    port: float = Field(default=5.0, gt=0, description="Wait for the listener's port")
    code: float = Field(default=300.0, gt=0, description="Wait for the browser callback")
    callback_response: float = Field(
        default=60.0, gt=0, description="Wait for the final browser redirect"
    )
    close_grace: float = Field(
        default=5.0, ge=0, description="Listener lifetime after the attempt concludes"
    )
    offline_prompt: float = Field(
        default=2.0, ge=0, description="Probe time before warning about being offline"
    )
    online_poll: float = Field(default=2.0, gt=0, description="Connectivity poll interval")
    refresh_online_wait: float = Field(
        default=5.0, gt=0, description="Connectivity poll interval before a refresh"
    )
    http: float = Field(default=30.0, gt=0, description="Token endpoint request timeout")


class SecretSettings(BaseSettings):
    """Refresh-token persistence settings.

    Environment prefix: LOGINFLOW_SECRETS__
    Example: LOGINFLOW_SECRETS__BACKEND=memory
    """

    model_config = SettingsConfigDict(
        env_prefix="LOGINFLOW_SECRETS__",
        extra="ignore",
    )

    backend: Literal["keyring", "memory", "none"] = "keyring"
    service_name: str = "loginflow"


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: LOGINFLOW_LOG__
    Example: LOGINFLOW_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="LOGINFLOW_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class _TomlFilesSource(PydanticBaseSettingsSource):
    """Settings source reading the merged TOML configuration files."""

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        return _load_toml_config()


_SECTIONS: list[tuple[str, str, str]] = [
    ("Environment", "ENVIRONMENT", "environment"),
    ("Timeouts", "TIMEOUT", "timeout"),
    ("Secret storage", "SECRETS", "secrets"),
    ("Logging", "LOG", "log"),
]


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{value}"'
    return str(value)


def _env_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class LoginFlowSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: LOGINFLOW_

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.loginflow] section
    3. ./loginflow.toml (project-level)
    4. ~/.config/loginflow/config.toml (user-level, overrides project)
    5. LOGINFLOW_CONFIG_FILE
    6. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="LOGINFLOW_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: EnvironmentSettings = Field(default_factory=EnvironmentSettings)
    timeout: TimeoutSettings = Field(default_factory=TimeoutSettings)
    secrets: SecretSettings = Field(default_factory=SecretSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    test_token_failure: bool = Field(
        default=False,
        description="Fail every refresh after it succeeds, to exercise fallback paths",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Place the TOML files between environment variables and defaults."""
        return (init_settings, env_settings, _TomlFilesSource(settings_cls))

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# loginflow configuration", "# Generated by: loginflow config --toml", ""]
        lines.append(f"test_token_failure = {_toml_value(self.test_token_failure)}")
        lines.append("")

        all_data = self.model_dump()
        for _, _, attr_name in _SECTIONS:
            lines.append(f"[{attr_name}]")
            lines.extend(
                f"{field_name} = {_toml_value(field_value)}"
                for field_name, field_value in all_data[attr_name].items()
            )
            lines.append("")

        return "\n".join(lines)

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# loginflow environment variables",
            "# Generated by: loginflow config --env",
            "",
            f'export LOGINFLOW_TEST_TOKEN_FAILURE="{_env_value(self.test_token_failure)}"',
        ]

        all_data = self.model_dump()
        for _, env_prefix, attr_name in _SECTIONS:
            lines.extend(
                f'export LOGINFLOW_{env_prefix}__{field_name.upper()}="{_env_value(field_value)}"'
                for field_name, field_value in all_data[attr_name].items()
            )

        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["loginflow configuration", "=" * 60, ""]
        lines.append(f"  {'test_token_failure':20} = {self.test_token_failure}")

        all_data = self.model_dump()
        for display_name, _, attr_name in _SECTIONS:
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in all_data[attr_name].items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:20} = {value_str}")

        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> LoginFlowSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return LoginFlowSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> LoginFlowSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
