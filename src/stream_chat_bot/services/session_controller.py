from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping

from loguru import logger

from stream_chat_bot.chunker import OutputChunker
from stream_chat_bot.commands.router import CommandRouter
from stream_chat_bot.context_builder import ContextBuilder
from stream_chat_bot.errors import BudgetExceeded, InvalidState, ProviderError, TransportError
from stream_chat_bot.generator import Generation, GenerationResult, StreamingGenerator
from stream_chat_bot.models import (
    FinishReason,
    InputState,
    ModelCatalog,
    ModelSpec,
    PreparedTurn,
    Role,
    Session,
)
from stream_chat_bot.prompt_templates import PROMPT_TEMPLATES, PromptTemplate
from stream_chat_bot.provider import LLMProvider
from stream_chat_bot.services.delivery import MessageWriter, deliver
from stream_chat_bot.session_store import SessionStore
from stream_chat_bot.system_prompt import build_help_text
from stream_chat_bot.transport import InboundEvent, MessagingTransport


class SessionController:
    """Per-user command handling on top of the session engine.

    The command methods (``send``, ``retry``, ``stop`` ...) raise typed errors;
    ``handle`` routes inbound events to them and turns those errors into
    replies, so a failure never escapes the user's own session.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        generator: StreamingGenerator,
        builder: ContextBuilder,
        catalog: ModelCatalog,
        transport: MessagingTransport,
        chunker_factory: Callable[[], OutputChunker],
        provider: LLMProvider,
        templates: Mapping[str, PromptTemplate] = PROMPT_TEMPLATES,
    ):
        self._store = store
        self._generator = generator
        self._builder = builder
        self._catalog = catalog
        self._transport = transport
        self._chunker_factory = chunker_factory
        self._provider = provider
        self._templates = templates
        self._router = CommandRouter(
            on_message=self._on_message,
            on_help=self._on_help,
            on_new=self._on_new,
            on_retry=self._on_retry,
            on_stop=self._on_stop,
            on_model=self._on_model,
            on_prompt=self._on_prompt,
            on_unknown=self._on_unknown,
            on_template=self._on_template,
            templates=templates.keys(),
        )

    # -- commands --------------------------------------------------------

    def new_conversation(self, user_id: str) -> None:
        generation = self._store.update(user_id, _reset_conversation)
        if generation is not None:
            generation.cancel()
        logger.info(f"New conversation for user {user_id}")

    async def send(self, user_id: str, chat_id: int, text: str) -> GenerationResult | None:
        """Generate a reply to ``text``.

        Returns ``None`` when the text was taken as the awaited system prompt.
        """
        consumed, generation = self._store.update(user_id, lambda s: _consume_as_system_prompt(s, text))
        if consumed:
            if generation is not None:
                generation.cancel()
            logger.info(f"System prompt updated for user {user_id}")
            return None

        generation = self._generator.start(user_id, lambda s: self._prepare_send(s, text))
        return await self._stream(generation, chat_id)

    async def retry(self, user_id: str, chat_id: int) -> GenerationResult:
        generation = self._generator.start(user_id, self._prepare_retry)
        return await self._stream(generation, chat_id)

    def stop(self, user_id: str) -> None:
        generation = self._store.get(user_id).active_generation
        if generation is None:
            raise InvalidState("Nothing to stop.")
        generation.cancel()

    def set_model(self, user_id: str, model_id: str) -> ModelSpec:
        spec = self._catalog.get(model_id.strip())
        if spec is None:
            raise InvalidState(
                f"Unknown model: {model_id}. Available: {', '.join(self._catalog.ids())}"
            )

        def apply(session: Session) -> None:
            session.model = spec.id

        self._store.update(user_id, apply)
        logger.info(f"User {user_id} switched to model {spec.id}")
        return spec

    def set_system_prompt(self, user_id: str, text: str | None) -> None:
        """Set the prompt and restart the conversation, or wait for it when ``text`` is empty."""
        if not text or not text.strip():

            def await_prompt(session: Session) -> None:
                session.input_state = InputState.AWAITING_SYSTEM_PROMPT

            self._store.update(user_id, await_prompt)
            return

        _, generation = self._store.update(user_id, lambda s: _apply_system_prompt(s, text.strip()))
        if generation is not None:
            generation.cancel()
        logger.info(f"System prompt updated for user {user_id}")

    async def run_template(self, user_id: str, command: str, text: str) -> str:
        """Answer ``text`` with a one-shot prompt template; history is left alone."""
        template = self._templates.get(command)
        if template is None:
            raise InvalidState(f"Unknown command: /{command}. Help: /help")
        if not text.strip():
            raise InvalidState(f"Usage: /{command} <text>")

        model = self._catalog.get(self._store.get(user_id).model) or self._catalog.default
        max_tokens = min(template.max_tokens, model.max_output_tokens)
        logger.info(f"Template /{command} for user {user_id}: model={model.id}, max_tokens={max_tokens}")
        completion = await self._provider.complete(model.id, template.messages(text), max_tokens)
        return template.format_answer(completion)

    async def handle(self, event: InboundEvent) -> None:
        await self._router.dispatch(event)

    # -- admission -------------------------------------------------------

    def _prepare_send(self, session: Session, text: str) -> PreparedTurn:
        request = self._builder.build(session, text)
        return PreparedTurn(session.history, text, request)

    def _prepare_retry(self, session: Session) -> PreparedTurn:
        history = session.history
        if session.last_failed_prompt:
            text = session.last_failed_prompt
        elif (
            len(history) >= 3
            and history[-1].role is Role.ASSISTANT
            and history[-2].role is Role.USER
        ):
            text = history[-2].content
            history = history[:-2]
        else:
            raise InvalidState("Nothing to retry yet.")
        request = self._builder.build(session, text, history=history)
        return PreparedTurn(history, text, request)

    async def _stream(self, generation: Generation, chat_id: int) -> GenerationResult:
        writer = MessageWriter(self._transport, chat_id)
        return await deliver(generation, self._chunker_factory(), writer)

    # -- event handlers --------------------------------------------------

    async def _on_message(self, event: InboundEvent) -> None:
        async def run() -> None:
            result = await self.send(event.user_id, event.chat_id, event.text)
            if result is None:
                await self._reply(event.chat_id, "System prompt updated. Started a new conversation.")
            else:
                await self._report(event.chat_id, result)

        await self._guarded(event, run)

    async def _on_retry(self, event: InboundEvent) -> None:
        async def run() -> None:
            result = await self.retry(event.user_id, event.chat_id)
            await self._report(event.chat_id, result)

        await self._guarded(event, run)

    async def _on_new(self, event: InboundEvent) -> None:
        self.new_conversation(event.user_id)
        await self._reply(event.chat_id, "Started a new conversation.")

    async def _on_stop(self, event: InboundEvent) -> None:
        async def run() -> None:
            self.stop(event.user_id)

        await self._guarded(event, run)

    async def _on_model(self, event: InboundEvent) -> None:
        if not event.args:
            current = self._store.get(event.user_id).model
            await self._reply(
                event.chat_id,
                f"Current model: {current}. Available: {', '.join(self._catalog.ids())}",
            )
            return

        async def run() -> None:
            spec = self.set_model(event.user_id, event.args)
            await self._reply(event.chat_id, f"Model set to {spec.id}.")

        await self._guarded(event, run)

    async def _on_prompt(self, event: InboundEvent) -> None:
        self.set_system_prompt(event.user_id, event.args)
        if event.args:
            await self._reply(event.chat_id, "System prompt updated. Started a new conversation.")
        else:
            await self._reply(event.chat_id, "Send the new system prompt as your next message.")

    async def _on_help(self, event: InboundEvent) -> None:
        current = self._store.get(event.user_id).model
        await self._reply(event.chat_id, build_help_text(self._catalog.ids(), current, self._templates.values()))

    async def _on_template(self, event: InboundEvent) -> None:
        async def run() -> None:
            answer = await self.run_template(event.user_id, event.command, event.args)
            if not answer:
                await self._reply(event.chat_id, "The model returned an empty response.")
                return
            writer = MessageWriter(self._transport, event.chat_id)
            await writer.apply(self._chunker_factory().whole_text(answer))

        await self._guarded(event, run)

    async def _on_unknown(self, event: InboundEvent) -> None:
        await self._reply(event.chat_id, f"Unknown command: /{event.command}. Help: /help")

    async def _guarded(self, event: InboundEvent, action: Callable[[], Awaitable[None]]) -> None:
        try:
            await action()
        except BudgetExceeded as ex:
            await self._reply(
                event.chat_id,
                f"This conversation is too long for the model ({ex}). Use /new to start over.",
            )
        except InvalidState as ex:
            logger.info(f"User {event.user_id}: {ex}")
            await self._reply(event.chat_id, str(ex))
        except ProviderError as ex:
            await self._reply(event.chat_id, f"Error: {ex}")

    async def _report(self, chat_id: int, result: GenerationResult) -> None:
        if result.error is not None:
            if result.text:
                await self._reply(
                    chat_id,
                    f"The response was interrupted: {result.error}. "
                    "The partial answer was kept; use /retry to regenerate it.",
                )
            else:
                await self._reply(chat_id, f"Error: {result.error}. Use /retry to try again.")
        elif result.finish_reason is FinishReason.LENGTH:
            await self._reply(chat_id, "The response hit the output token limit and was cut short.")
        elif not result.text and result.finish_reason is FinishReason.STOP:
            await self._reply(chat_id, "The model returned an empty response.")

    async def _reply(self, chat_id: int, text: str) -> None:
        try:
            await self._transport.create_message(chat_id, text)
        except TransportError as ex:
            logger.warning(f"Reply to chat {chat_id} failed: {ex}")


def _detach_generation(session: Session) -> Generation | None:
    generation = session.active_generation
    session.active_generation = None
    return generation


def _reset_conversation(session: Session) -> Generation | None:
    generation = _detach_generation(session)
    session.reset_history()
    return generation


def _apply_system_prompt(session: Session, text: str) -> tuple[bool, Generation | None]:
    session.system_prompt = text
    session.input_state = InputState.NORMAL
    return True, _reset_conversation(session)


def _consume_as_system_prompt(session: Session, text: str) -> tuple[bool, Generation | None]:
    if session.input_state is not InputState.AWAITING_SYSTEM_PROMPT:
        return False, None
    return _apply_system_prompt(session, text.strip())
