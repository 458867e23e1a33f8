from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from loguru import logger

from stream_chat_bot.errors import GenerationInProgress, ProviderError
from stream_chat_bot.fragment_stream import FragmentStream
from stream_chat_bot.logging_config import conversation_context
from stream_chat_bot.models import (
    ContextRequest,
    FinishReason,
    Fragment,
    PreparedTurn,
    Role,
    Session,
    Turn,
)
from stream_chat_bot.provider import LLMProvider
from stream_chat_bot.session_store import SessionStore


@dataclass(frozen=True)
class GenerationResult:
    text: str
    finish_reason: FinishReason
    error: ProviderError | None = None
    committed: bool = True


class Generation:
    """Handle for one in-flight streaming completion.

    Lives in ``Session.active_generation`` from admission until it finishes,
    is stopped, or fails. Finishing happens exactly once: the text is
    committed as the assistant turn (or the user turn is withdrawn when
    nothing was generated) and ``wait()`` resolves.

    A stopped generation commits only what the consumer already took from
    ``fragments()``; anything still queued is dropped with the stream.
    """

    def __init__(self, user_id: str, request: ContextRequest, user_turn: Turn, store: SessionStore):
        self.id = uuid4().hex[:8]
        self.user_id = user_id
        self.request = request
        self.user_turn = user_turn
        self._store = store
        self._stream = FragmentStream()
        self._received: list[str] = []
        self._done: asyncio.Future[GenerationResult] = asyncio.get_running_loop().create_future()
        self._task: asyncio.Task | None = None
        self._finished = False

    @property
    def text(self) -> str:
        """Everything the provider has produced so far."""
        return "".join(self._received)

    @property
    def finished(self) -> bool:
        return self._finished

    def fragments(self) -> FragmentStream:
        return self._stream

    def start(self, provider: LLMProvider) -> None:
        if self._task is not None:
            raise RuntimeError(f"Generation {self.id} already started")
        self._task = asyncio.create_task(self._run(provider), name=f"generation-{self.id}")

    def cancel(self) -> None:
        """Stop the generation, keeping whatever the consumer has received.

        Safe to call repeatedly and while fragments are being consumed. Once
        it returns, the consumer receives no further fragments.
        """
        if self._finished:
            return
        self._finish(FinishReason.STOPPED, discard_pending=True)
        logger.info(
            f"Generation {self.id} for user {self.user_id} stopped after "
            f"{len(self._stream.consumed_text)} of {len(self.text)} chars"
        )
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> GenerationResult:
        return await asyncio.shield(self._done)

    async def _run(self, provider: LLMProvider) -> None:
        messages = [t.to_message() for t in self.request.messages]
        with conversation_context(self.user_id, self.id):
            try:
                async for fragment in provider.stream_complete(
                    self.request.model,
                    messages,
                    self.request.max_output_tokens,
                ):
                    if fragment.text:
                        self._deliver(fragment.text)
                    if fragment.is_terminal:
                        self._finish(fragment.finish_reason)
                        break
                self._finish(FinishReason.STOP)
            except asyncio.CancelledError:
                self._finish(FinishReason.STOPPED, discard_pending=True)
                raise
            except ProviderError as ex:
                logger.warning(f"Generation {self.id} failed after {len(self.text)} chars: {ex}")
                self._finish(FinishReason.ERROR, error=ex)
            except Exception as ex:
                logger.exception(f"Generation {self.id} failed unexpectedly")
                self._finish(FinishReason.ERROR, error=ProviderError(str(ex)))
            else:
                logger.info(f"Generation {self.id} finished with {len(self.text)} chars")

    def _deliver(self, text: str) -> None:
        if self._finished:
            return
        self._received.append(text)
        self._stream.push(Fragment(text))

    def _finish(
        self,
        reason: FinishReason,
        *,
        error: ProviderError | None = None,
        discard_pending: bool = False,
    ) -> None:
        if self._finished:
            return
        self._finished = True
        # Queued fragments are about to be dropped, so only consumed text counts.
        text = self._stream.consumed_text if discard_pending else self.text
        committed = self._store.update(self.user_id, lambda session: self._commit(session, text, error))
        if not discard_pending:
            self._stream.push(Fragment(finish_reason=reason))
        self._stream.close(discard=discard_pending)
        self._done.set_result(GenerationResult(text, reason, error, committed))

    def _commit(self, session: Session, text: str, error: ProviderError | None) -> bool:
        # A reset (new conversation, prompt change) already detached this generation.
        if session.active_generation is not self:
            return False
        session.active_generation = None
        if text:
            session.history = session.history + (Turn(Role.ASSISTANT, text),)
            return True
        if session.history and session.history[-1] is self.user_turn:
            session.history = session.history[:-1]
        if error is not None:
            session.last_failed_prompt = self.user_turn.content
        return False


class StreamingGenerator:
    def __init__(self, store: SessionStore, provider: LLMProvider):
        self._store = store
        self._provider = provider

    def start(self, user_id: str, prepare: Callable[[Session], PreparedTurn]) -> Generation:
        """Admit a new generation for ``user_id`` and start streaming it.

        ``prepare`` runs inside the store's atomic update: it decides the
        history the request is built on and may raise to refuse admission.
        """

        def admit(session: Session) -> Generation:
            if session.active_generation is not None:
                raise GenerationInProgress()
            prepared = prepare(session)
            user_turn = Turn(Role.USER, prepared.user_text)
            generation = Generation(user_id, prepared.request, user_turn, self._store)
            session.history = prepared.history + (user_turn,)
            session.active_generation = generation
            session.last_failed_prompt = None
            return generation

        generation = self._store.update(user_id, admit)
        logger.info(
            f"Generation {generation.id} started for user {user_id}: model={generation.request.model}, "
            f"prompt_tokens~{generation.request.prompt_tokens}, max_tokens={generation.request.max_output_tokens}"
        )
        generation.start(self._provider)
        return generation
