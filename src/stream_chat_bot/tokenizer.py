import math
from collections.abc import Iterable

from stream_chat_bot.models import Turn

# Chat APIs wrap every message in role/separator tokens and prime the reply.
MESSAGE_OVERHEAD_TOKENS = 4
REPLY_PRIMING_TOKENS = 3


def estimate_text_tokens(text: str) -> int:
    """Over-estimate the token count of ``text``.

    English averages ~4 characters per token; dividing by 3 leaves headroom,
    and the UTF-8 byte count keeps non-Latin scripts from being undercounted.
    """
    if not text:
        return 0
    by_chars = math.ceil(len(text) / 3)
    by_bytes = math.ceil(len(text.encode("utf-8")) / 4)
    return max(by_chars, by_bytes)


def estimate_turn_tokens(turn: Turn) -> int:
    return (
        MESSAGE_OVERHEAD_TOKENS
        + estimate_text_tokens(turn.role.value)
        + estimate_text_tokens(turn.content)
    )


def estimate_prompt_tokens(turns: Iterable[Turn]) -> int:
    return sum(estimate_turn_tokens(t) for t in turns) + REPLY_PRIMING_TOKENS
