from __future__ import annotations

from dataclasses import dataclass

from stream_chat_bot.access import AllowList
from stream_chat_bot.app_config import AppConfig, RuntimeEnv
from stream_chat_bot.bot import Bot
from stream_chat_bot.chunker import OutputChunker
from stream_chat_bot.context_builder import ContextBuilder
from stream_chat_bot.generator import StreamingGenerator
from stream_chat_bot.models import ModelCatalog
from stream_chat_bot.provider import LLMProvider, create_provider
from stream_chat_bot.services.session_controller import SessionController
from stream_chat_bot.session_store import SessionStore
from stream_chat_bot.transport import MessagingTransport
from stream_chat_bot.transports.telegram_transport import TelegramTransport


@dataclass
class AppRuntime:
    bot: Bot
    controller: SessionController
    transport: MessagingTransport
    store: SessionStore
    catalog: ModelCatalog
    allow_list: AllowList


def build_runtime(
    app: AppConfig,
    *,
    provider: LLMProvider,
    transport: MessagingTransport,
) -> AppRuntime:
    catalog = app.catalog()
    store = SessionStore(default_model=catalog.default.id, default_system_prompt=app.system_prompt)
    builder = ContextBuilder(catalog)
    generator = StreamingGenerator(store, provider)

    def chunker_factory() -> OutputChunker:
        return OutputChunker(
            app.max_message_length,
            streaming_marker=app.streaming_marker,
            overflow=app.overflow_policy,
        )

    controller = SessionController(
        store=store,
        generator=generator,
        builder=builder,
        catalog=catalog,
        transport=transport,
        chunker_factory=chunker_factory,
        provider=provider,
    )
    allow_list = AllowList(app.allowed_user_ids)
    bot = Bot(transport=transport, controller=controller, allow_list=allow_list)
    return AppRuntime(
        bot=bot,
        controller=controller,
        transport=transport,
        store=store,
        catalog=catalog,
        allow_list=allow_list,
    )


def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    provider = create_provider(app.provider_name, env.provider_api_key, temperature=app.temperature)
    transport = TelegramTransport(env.telegram_bot_token, poll_timeout=app.poll_timeout_seconds)
    return build_runtime(app, provider=provider, transport=transport)
