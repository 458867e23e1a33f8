from loguru import logger

from stream_chat_bot.errors import BudgetExceeded
from stream_chat_bot.models import ContextRequest, ModelCatalog, Role, Session, Turn
from stream_chat_bot.tokenizer import estimate_prompt_tokens


class ContextBuilder:
    """Compose the message list for a request and size its output budget.

    History is never truncated: a conversation that no longer fits the
    model's context ceiling fails with ``BudgetExceeded``.
    """

    def __init__(self, catalog: ModelCatalog):
        self._catalog = catalog

    def build(
        self,
        session: Session,
        pending_text: str,
        *,
        history: tuple[Turn, ...] | None = None,
    ) -> ContextRequest:
        spec = self._catalog.get(session.model) or self._catalog.default
        turns = list(session.history if history is None else history)
        turns.append(Turn(Role.USER, pending_text))

        prompt_tokens = estimate_prompt_tokens(turns)
        remaining = spec.context_tokens - prompt_tokens
        if remaining <= 0:
            logger.info(
                f"Context budget exceeded for user {session.user_id}: "
                f"~{prompt_tokens:,} of {spec.context_tokens:,} tokens ({spec.id})"
            )
            raise BudgetExceeded(prompt_tokens, spec.context_tokens)

        return ContextRequest(
            model=spec.id,
            messages=turns,
            max_output_tokens=min(spec.max_output_tokens, remaining),
            prompt_tokens=prompt_tokens,
        )
