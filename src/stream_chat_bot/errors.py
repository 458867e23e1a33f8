class ChatBotError(Exception):
    """Base class for failures scoped to a single session."""


class BudgetExceeded(ChatBotError):
    def __init__(self, prompt_tokens: int, context_tokens: int):
        super().__init__(
            f"Conversation needs ~{prompt_tokens:,} tokens but the model accepts {context_tokens:,}"
        )
        self.prompt_tokens = prompt_tokens
        self.context_tokens = context_tokens


class ProviderError(ChatBotError):
    pass


class TransportError(ChatBotError):
    pass


class InvalidState(ChatBotError):
    pass


class GenerationInProgress(InvalidState):
    def __init__(self) -> None:
        super().__init__("A response is still being generated. Use /stop to interrupt it.")
