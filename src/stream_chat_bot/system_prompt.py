from collections.abc import Iterable

from stream_chat_bot.prompt_templates import PromptTemplate

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant. Answer concisely and accurately."


def build_help_text(
    model_ids: list[str],
    current_model: str | None = None,
    templates: Iterable[PromptTemplate] = (),
) -> str:
    lines = [
        "Send any text to chat with the model. Replies stream in as they are generated.",
        "",
        "/new - start a new conversation",
        "/retry - regenerate the last answer",
        "/stop - stop the answer being generated",
        "/model <id> - switch model (" + ", ".join(model_ids) + ")",
        "/prompt [text] - set the system prompt; without text, the next message becomes the prompt",
        "/help - show this help",
    ]
    one_shot = [f"/{t.command} <text> - {t.description}" for t in templates]
    if one_shot:
        lines.append("")
        lines.append("One-shot commands (not part of the conversation):")
        lines.extend(one_shot)
    if current_model:
        lines.append("")
        lines.append(f"Current model: {current_model}")
    return "\n".join(lines)
