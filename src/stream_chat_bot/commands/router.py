from __future__ import annotations

from collections.abc import Awaitable, Callable, Collection

from stream_chat_bot.transport import InboundEvent

Handler = Callable[[InboundEvent], Awaitable[None]]


class CommandRouter:
    _HELP = {"help", "start"}
    _NEW = {"new"}
    _RETRY = {"retry"}
    _STOP = {"stop"}
    _MODEL = {"model", "set-model", "set_model"}
    _PROMPT = {"prompt", "set-system-prompt", "set_system_prompt"}

    def __init__(
        self,
        *,
        on_message: Handler,
        on_help: Handler,
        on_new: Handler,
        on_retry: Handler,
        on_stop: Handler,
        on_model: Handler,
        on_prompt: Handler,
        on_unknown: Handler,
        on_template: Handler | None = None,
        templates: Collection[str] = (),
    ) -> None:
        self._on_message = on_message
        self._on_help = on_help
        self._on_new = on_new
        self._on_retry = on_retry
        self._on_stop = on_stop
        self._on_model = on_model
        self._on_prompt = on_prompt
        self._on_unknown = on_unknown
        self._on_template = on_template
        self._templates = frozenset(templates) if on_template is not None else frozenset()

    async def dispatch(self, event: InboundEvent) -> None:
        if not event.is_command:
            await self._on_message(event)
            return

        command = event.command
        if command in self._HELP:
            await self._on_help(event)
        elif command in self._NEW:
            await self._on_new(event)
        elif command in self._RETRY:
            await self._on_retry(event)
        elif command in self._STOP:
            await self._on_stop(event)
        elif command in self._MODEL:
            await self._on_model(event)
        elif command in self._PROMPT:
            await self._on_prompt(event)
        elif command in self._templates:
            await self._on_template(event)
        else:
            await self._on_unknown(event)
