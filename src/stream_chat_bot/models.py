from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stream_chat_bot.generator import Generation


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class InputState(Enum):
    NORMAL = "normal"
    AWAITING_SYSTEM_PROMPT = "awaiting_system_prompt"


class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str

    def to_message(self) -> dict:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class Fragment:
    text: str = ""
    finish_reason: FinishReason | None = None

    @property
    def is_terminal(self) -> bool:
        return self.finish_reason is not None


@dataclass(frozen=True)
class ModelSpec:
    id: str
    context_tokens: int
    max_output_tokens: int


class ModelCatalog:
    """Ordered set of models a session may pick from; the first one is the default."""

    def __init__(self, models: list[ModelSpec], default: str | None = None):
        if not models:
            raise ValueError("Model catalog must contain at least one model")
        self._models = {m.id: m for m in models}
        if default is not None and default not in self._models:
            raise ValueError(f"Default model {default!r} is not in the catalog: {', '.join(self._models)}")
        self._default = default or models[0].id

    @property
    def default(self) -> ModelSpec:
        return self._models[self._default]

    def ids(self) -> list[str]:
        return list(self._models)

    def get(self, model_id: str) -> ModelSpec | None:
        return self._models.get(model_id)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __getitem__(self, model_id: str) -> ModelSpec:
        return self._models[model_id]


DEFAULT_CATALOGS: dict[str, list[ModelSpec]] = {
    "openai": [
        ModelSpec("gpt-3.5-turbo", context_tokens=4096, max_output_tokens=1024),
        ModelSpec("gpt-4", context_tokens=8192, max_output_tokens=2048),
    ],
    "anthropic": [
        ModelSpec("claude-3-5-haiku-20241022", context_tokens=200_000, max_output_tokens=4096),
        ModelSpec("claude-sonnet-4-5-20250929", context_tokens=200_000, max_output_tokens=8192),
    ],
}


@dataclass
class Session:
    user_id: str
    model: str
    system_prompt: str
    history: tuple[Turn, ...] = ()
    input_state: InputState = InputState.NORMAL
    active_generation: Generation | None = None
    last_failed_prompt: str | None = None

    def __post_init__(self) -> None:
        if not self.history:
            self.history = (Turn(Role.SYSTEM, self.system_prompt),)

    def reset_history(self) -> None:
        self.history = (Turn(Role.SYSTEM, self.system_prompt),)
        self.last_failed_prompt = None


@dataclass(frozen=True)
class ContextRequest:
    model: str
    messages: list[Turn] = field(default_factory=list)
    max_output_tokens: int = 0
    prompt_tokens: int = 0


@dataclass(frozen=True)
class PreparedTurn:
    history: tuple[Turn, ...]
    user_text: str
    request: ContextRequest
