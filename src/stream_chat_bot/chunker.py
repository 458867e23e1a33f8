from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from stream_chat_bot.models import Fragment


@dataclass(frozen=True)
class CreateMessage:
    text: str


@dataclass(frozen=True)
class EditMessage:
    text: str


Operation = CreateMessage | EditMessage


class OverflowPolicy(Enum):
    # The new message starts with the fragment that did not fit.
    START_FRESH = "start_fresh"
    # The current message is filled to the limit; only the remainder moves on.
    CARRY_REMAINDER = "carry_remainder"

    @classmethod
    def parse(cls, value: str) -> OverflowPolicy:
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown overflow policy: {value!r}. Supported: "
                + ", ".join(repr(p.value) for p in cls)
            ) from None


class OutputChunker:
    """Turn a stream of fragments into create/edit operations on chat messages.

    Every message sent stays below ``limit`` characters, including the
    streaming marker appended while output is still arriving. Pure and
    synchronous: the same fragments always yield the same operations.
    """

    def __init__(
        self,
        limit: int,
        *,
        streaming_marker: str = "",
        overflow: OverflowPolicy = OverflowPolicy.START_FRESH,
    ):
        if limit <= len(streaming_marker) + 1:
            raise ValueError(f"Message limit {limit} is too small for marker {streaming_marker!r}")
        self._limit = limit
        self._marker = streaming_marker
        self._overflow = overflow
        self._text = ""
        self._last_sent: str | None = None
        self._finished = False

    @property
    def text(self) -> str:
        """Accumulated text of the message currently open."""
        return self._text

    def feed(self, fragment: Fragment) -> list[Operation]:
        if self._finished:
            return []
        ops = self._append(fragment.text) if fragment.text else []
        if fragment.is_terminal:
            ops.extend(self.finish())
        return ops

    def finish(self) -> list[Operation]:
        """Finalize the open message: drop the streaming marker."""
        if self._finished:
            return []
        self._finished = True
        return self._finalize()

    def whole_text(self, text: str) -> list[Operation]:
        """Operations for text that is already complete: no marker, no edits."""
        size = self._limit - 1
        return [CreateMessage(text[i : i + size]) for i in range(0, len(text), size)]

    def _append(self, piece: str) -> list[Operation]:
        ops: list[Operation] = []
        capacity = self._capacity()

        if self._last_sent is None:
            head, piece = piece[:capacity], piece[capacity:]
            self._text = head
            ops.append(self._emit(CreateMessage(head + self._marker)))

        elif len(self._text) + len(piece) > capacity:
            if self._overflow is OverflowPolicy.CARRY_REMAINDER:
                room = capacity - len(self._text)
                if room > 0:
                    self._text += piece[:room]
                    piece = piece[room:]
            ops.extend(self._finalize())
            head, piece = piece[:capacity], piece[capacity:]
            self._text = head
            if head:
                ops.append(self._emit(CreateMessage(head + self._marker)))

        else:
            self._text += piece
            piece = ""
            ops.append(self._emit(EditMessage(self._text + self._marker)))

        # Whatever is left is longer than a whole message.
        while piece:
            ops.extend(self._finalize())
            head, piece = piece[:capacity], piece[capacity:]
            self._text = head
            ops.append(self._emit(CreateMessage(head + self._marker)))

        return ops

    def _capacity(self) -> int:
        # Longest text that keeps text + marker strictly below the limit.
        return self._limit - 1 - len(self._marker)

    def _finalize(self) -> list[Operation]:
        if self._last_sent is None or self._last_sent == self._text:
            return []
        return [self._emit(EditMessage(self._text))]

    def _emit(self, op: Operation) -> Operation:
        self._last_sent = op.text
        return op
