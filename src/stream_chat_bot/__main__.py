import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from stream_chat_bot.app_config import load_json_config, parse_app_config, resolve_runtime_env
from stream_chat_bot.bootstrap import bootstrap_runtime
from stream_chat_bot.errors import TransportError
from stream_chat_bot.logging_config import setup_logging


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    env = resolve_runtime_env(app.provider_name)
    if not env.provider_api_key:
        logger.error(f"{env.provider_env_var} environment variable is required.")
        sys.exit(1)
    if not env.telegram_bot_token:
        logger.error("TELEGRAM_BOT_TOKEN environment variable is required.")
        sys.exit(1)

    runtime = bootstrap_runtime(app, env)
    try:
        me = await runtime.transport.get_me()
    except TransportError as ex:
        logger.error(f"Could not authorize with Telegram: {ex}")
        await runtime.transport.close()
        sys.exit(1)

    logger.info(f"Authorized on account @{me.get('username', '?')}")
    logger.info(
        f"Provider: {app.provider_name}, models: {', '.join(runtime.catalog.ids())} "
        f"(default {runtime.catalog.default.id})"
    )
    logger.info(f"Allowed users: {runtime.allow_list.describe()}")
    if log_descriptions:
        logger.info(f"Logging: {', '.join(log_descriptions)}")

    try:
        await runtime.bot.run()
    finally:
        await runtime.bot.shutdown()
        await runtime.transport.close()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
