from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from stream_chat_bot.chunker import OverflowPolicy
from stream_chat_bot.models import DEFAULT_CATALOGS, ModelCatalog, ModelSpec
from stream_chat_bot.system_prompt import DEFAULT_SYSTEM_PROMPT
from stream_chat_bot.transports.telegram_transport import TELEGRAM_MAX_MESSAGE_LENGTH


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str
    telegram_bot_token: str


@dataclass
class AppConfig:
    provider_name: str
    models: list[ModelSpec]
    default_model: str | None
    temperature: float
    system_prompt: str
    max_message_length: int
    streaming_marker: str
    overflow_policy: OverflowPolicy
    allowed_user_ids: list[str] = field(default_factory=list)
    poll_timeout_seconds: int = 30
    log_level: str = "INFO"
    log_consumers: list | None = None

    def catalog(self) -> ModelCatalog:
        return ModelCatalog(self.models, default=self.default_model)


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _parse_models(raw: object, provider_name: str) -> list[ModelSpec]:
    if not raw:
        if provider_name not in DEFAULT_CATALOGS:
            raise ValueError(f"Unknown provider: {provider_name!r}. Supported: {', '.join(DEFAULT_CATALOGS)}")
        return list(DEFAULT_CATALOGS[provider_name])
    if not isinstance(raw, list):
        raise ValueError("Models must be a list of {Id, ContextTokens, MaxOutputTokens} objects")
    return [
        ModelSpec(
            id=str(entry["Id"]),
            context_tokens=int(entry["ContextTokens"]),
            max_output_tokens=int(entry["MaxOutputTokens"]),
        )
        for entry in raw
    ]


def parse_app_config(config: dict) -> AppConfig:
    provider_name = config.get("Provider", "openai").strip().lower()
    return AppConfig(
        provider_name=provider_name,
        models=_parse_models(config.get("Models"), provider_name),
        default_model=str(config.get("DefaultModel", "")).strip() or None,
        temperature=float(config.get("Temperature", 1.0)),
        system_prompt=config.get("SystemPrompt", DEFAULT_SYSTEM_PROMPT),
        max_message_length=int(config.get("MaxMessageLength", TELEGRAM_MAX_MESSAGE_LENGTH)),
        streaming_marker=config.get("StreamingMarker", " ▌"),
        overflow_policy=OverflowPolicy.parse(config.get("OverflowPolicy", "start_fresh")),
        allowed_user_ids=[str(u) for u in config.get("AllowedUserIds", [])],
        poll_timeout_seconds=int(config.get("PollTimeoutSeconds", 30)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    if provider_name == "anthropic":
        provider_env_var = "ANTHROPIC_API_KEY"
    else:
        provider_env_var = "OPENAI_API_KEY"

    return RuntimeEnv(
        provider_api_key=os.environ.get(provider_env_var, ""),
        provider_env_var=provider_env_var,
        telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN", ""),
    )
