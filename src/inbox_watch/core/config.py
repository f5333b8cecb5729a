"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator

from .models import Priority

AuthMethod = Literal["password", "oauth2"]
HookMode = Literal["none", "notify", "triage"]


class AccountSettings(BaseModel):
    """Connection details for one watched mail account."""

    name: str = Field(description="Unique account name used in events and logs")
    host: str = Field(default="imap.gmail.com", description="IMAP hostname")
    port: int = Field(default=993, description="IMAP port, typically 993 for SSL")
    use_ssl: bool = Field(default=True, description="Whether to enforce SSL")
    verify_ssl: bool = Field(
        default=True, description="Verify the server certificate chain"
    )
    username: str | None = Field(default=None, description="Account username")
    password: str | None = Field(
        default=None, description="App password, or access token when auth=oauth2"
    )
    auth: AuthMethod = Field(
        default="password", description="Authenticate with a password or a bearer token"
    )


class WatcherSettings(BaseModel):
    """Settings controlling the push-subscribed folder watchers."""

    enabled: bool = Field(default=False, description="Start watchers at launch")
    folders: list[str] = Field(
        default_factory=lambda: ["INBOX"], description="Folders watched per account"
    )
    poll_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Keepalive interval used by the IMAP subscription",
    )
    initial_backoff_seconds: float = Field(
        default=1.0, gt=0, description="First reconnect delay"
    )
    max_backoff_seconds: float = Field(
        default=60.0, gt=0, description="Upper bound for reconnect delays"
    )
    max_consecutive_failures: int | None = Field(
        default=None,
        ge=1,
        description="Stop retrying a target after this many failures; None retries forever",
    )

    @field_validator("folders", mode="before")
    @classmethod
    def _split_folders(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


class AlertSettings(BaseModel):
    """Settings for the multi-channel alert dispatcher."""

    desktop: bool = Field(default=False, description="Send desktop notifications")
    sound: bool = Field(default=False, description="Play a sound for urgent alerts")
    urgency_threshold: Priority = Field(
        default=Priority.HIGH, description="Minimum priority for desktop alerts"
    )
    webhook_url: str | None = Field(default=None, description="Webhook endpoint")
    webhook_events: list[Priority] = Field(
        default_factory=lambda: [Priority.URGENT, Priority.HIGH],
        description="Priorities forwarded to the webhook",
    )

    @field_validator("webhook_events", mode="before")
    @classmethod
    def _split_events(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


class RuleMatch(BaseModel):
    """Patterns a message must satisfy for a rule to fire."""

    sender: str | None = Field(default=None, description="Sender name/address pattern")
    to: str | None = Field(default=None, description="Recipient address pattern")
    subject: str | None = Field(default=None, description="Subject pattern")


class RuleActions(BaseModel):
    """Actions applied when a rule fires."""

    labels: list[str] = Field(default_factory=list)
    flag: bool = False
    mark_read: bool = False
    alert: bool = False


class HookRule(BaseModel):
    """Static triage rule evaluated before any AI classification."""

    name: str
    match: RuleMatch = Field(default_factory=RuleMatch)
    actions: RuleActions = Field(default_factory=RuleActions)


class HooksSettings(BaseModel):
    """Settings for the batching triage engine."""

    on_new_email: HookMode = Field(
        default="notify", description="Disable, log-only notify, or AI triage"
    )
    batch_delay_seconds: float = Field(
        default=5.0, ge=0.0, description="Window used to coalesce arrivals"
    )
    auto_label: bool = Field(default=False, description="Apply AI suggested labels")
    auto_flag: bool = Field(default=False, description="Flag messages the AI marks")
    preset: str = Field(default="inbox-zero", description="Triage preset identifier")
    custom_instructions: str | None = Field(
        default=None, description="Free-form text appended to the triage prompt"
    )
    rules: list[HookRule] = Field(default_factory=list)
    alerts: AlertSettings = Field(default_factory=AlertSettings)


class LlmSettings(BaseModel):
    """Settings for the local LLM provider backing the triage call."""

    enabled: bool = Field(
        default=False, description="Advertise the classification capability"
    )
    base_url: str = Field(
        default="http://localhost:11434", description="Ollama server URL"
    )
    model: str = Field(default="gpt-oss:20b", description="Model identifier")
    timeout_seconds: int = Field(
        default=30, description="Request timeout for LLM calls"
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for LLM completions",
    )
    max_output_tokens: int | None = Field(
        default=1000,
        ge=32,
        description="Maximum tokens to request from the provider",
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    accounts: list[AccountSettings] = Field(default_factory=list)
    watcher: WatcherSettings = Field(default_factory=WatcherSettings)
    hooks: HooksSettings = Field(default_factory=HooksSettings)
    llm: LlmSettings = Field(default_factory=LlmSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_PREFIX = "INBOX_WATCH_"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _listify(node: Any) -> Any:
    """Turn dictionaries keyed only by integers into index-ordered lists."""
    if not isinstance(node, dict):
        return node
    converted = {key: _listify(value) for key, value in node.items()}
    if converted and all(key.isdigit() for key in converted):
        return [converted[key] for key in sorted(converted, key=int)]
    return converted


def _collect_env_values(
    env_file: Path | str | None, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values: dict[str, str] = {}
    if include_environment:
        env_values = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return cast(dict[str, Any], _listify(collected))


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    *,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AccountSettings",
    "AlertSettings",
    "AppSettings",
    "HookMode",
    "HookRule",
    "HooksSettings",
    "LlmSettings",
    "LoggingSettings",
    "RuleActions",
    "RuleMatch",
    "WatcherSettings",
    "ENV_PREFIX",
    "load_app_settings",
]
