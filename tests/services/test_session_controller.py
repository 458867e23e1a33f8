import asyncio
import unittest

from stream_chat_bot.errors import BudgetExceeded, GenerationInProgress, InvalidState
from stream_chat_bot.models import FinishReason, InputState, ModelSpec, Role, Turn
from stream_chat_bot.transport import InboundEvent, parse_inbound_text
from tests.fakes import RecordingTransport, ScriptedProvider, make_catalog, make_controller, wait_until

CHAT = 555


def _event(text: str, user_id: str = "u1") -> InboundEvent:
    is_command, command, args = parse_inbound_text(text)
    return InboundEvent(
        user_id=user_id,
        chat_id=CHAT,
        text=text,
        is_command=is_command,
        command=command,
        args=args,
    )


class SessionControllerCommandTests(unittest.TestCase):
    def test_send_streams_reply_and_commits_exchange(self) -> None:
        provider = ScriptedProvider(["Hel", "lo"])
        controller, store, transport = make_controller(provider, marker=" ▌")

        result = asyncio.run(controller.send("u1", CHAT, "hi"))

        self.assertEqual("Hello", result.text)
        self.assertEqual(
            [
                ("create", CHAT, 101, "Hel ▌"),
                ("edit", CHAT, 101, "Hello ▌"),
                ("edit", CHAT, 101, "Hello"),
            ],
            transport.ops,
        )
        self.assertEqual(
            [Turn(Role.SYSTEM, "sys"), Turn(Role.USER, "hi"), Turn(Role.ASSISTANT, "Hello")],
            list(store.get("u1").history),
        )

    def test_send_splits_reply_at_message_limit(self) -> None:
        provider = ScriptedProvider(["Hello, ", "world", "!"])
        controller, _, transport = make_controller(provider, limit=10)

        asyncio.run(controller.send("u1", CHAT, "hi"))

        self.assertEqual(
            [
                ("create", CHAT, 101, "Hello, "),
                ("create", CHAT, 102, "world"),
                ("edit", CHAT, 102, "world!"),
            ],
            transport.ops,
        )

    def test_budget_exceeded_does_not_call_provider(self) -> None:
        provider = ScriptedProvider(["never"])
        catalog = make_catalog(ModelSpec("tiny", context_tokens=30, max_output_tokens=10))
        controller, store, transport = make_controller(provider, catalog=catalog)

        with self.assertRaises(BudgetExceeded):
            asyncio.run(controller.send("u1", CHAT, "x" * 200))

        self.assertEqual([], provider.calls)
        self.assertEqual([], transport.ops)
        session = store.get("u1")
        self.assertEqual(1, len(session.history))
        self.assertIsNone(session.active_generation)

    def test_concurrent_send_is_rejected(self) -> None:
        provider = ScriptedProvider(["first", " answer"], hold_before=1)
        controller, store, _ = make_controller(provider)

        async def scenario():
            task = asyncio.create_task(controller.send("u1", CHAT, "one"))
            await wait_until(lambda: store.get("u1").active_generation is not None)
            with self.assertRaises(GenerationInProgress):
                await controller.send("u1", CHAT, "two")
            provider.release.set()
            return await task

        result = asyncio.run(scenario())

        self.assertEqual("first answer", result.text)
        self.assertEqual(1, len(provider.calls))
        self.assertEqual(["sys", "one", "first answer"], [t.content for t in store.get("u1").history])

    def test_stop_keeps_partial_answer_and_is_idempotent(self) -> None:
        provider = ScriptedProvider(["Hello", " world"], hold_before=1)
        controller, store, transport = make_controller(provider)

        async def scenario():
            task = asyncio.create_task(controller.send("u1", CHAT, "hi"))
            await wait_until(lambda: bool(transport.ops))
            controller.stop("u1")
            with self.assertRaises(InvalidState):
                controller.stop("u1")
            return await task

        result = asyncio.run(scenario())

        self.assertIs(FinishReason.STOPPED, result.finish_reason)
        self.assertEqual([("create", CHAT, 101, "Hello")], transport.ops)
        session = store.get("u1")
        self.assertEqual(Turn(Role.ASSISTANT, "Hello"), session.history[-1])
        self.assertIsNone(session.active_generation)

    def test_stop_with_slow_delivery_commits_what_was_shown(self) -> None:
        provider = ScriptedProvider(["A", "B", "C", "D"], hold_before=3)
        controller, store, transport = make_controller(provider, transport=RecordingTransport(lag=5))

        def consumer_took_first_fragment() -> bool:
            generation = store.get("u1").active_generation
            return generation is not None and generation.fragments().consumed_text == "A"

        async def scenario():
            task = asyncio.create_task(controller.send("u1", CHAT, "hi"))
            await wait_until(consumer_took_first_fragment)
            self.assertEqual("ABC", store.get("u1").active_generation.text)
            self.assertEqual([], transport.ops)
            controller.stop("u1")
            return await task

        result = asyncio.run(scenario())

        self.assertEqual("A", result.text)
        self.assertEqual([("create", CHAT, 101, "A")], transport.ops)
        self.assertEqual(Turn(Role.ASSISTANT, "A"), store.get("u1").history[-1])

    def test_stop_sends_only_the_marker_removing_edit(self) -> None:
        provider = ScriptedProvider(["Hello", " world"], hold_before=1)
        controller, store, transport = make_controller(provider, marker=" ▌")

        async def scenario():
            task = asyncio.create_task(controller.send("u1", CHAT, "hi"))
            await wait_until(lambda: bool(transport.ops))
            controller.stop("u1")
            sent_before_stop = len(transport.ops)
            await task
            return sent_before_stop

        sent_before_stop = asyncio.run(scenario())

        self.assertEqual([("create", CHAT, 101, "Hello ▌")], transport.ops[:sent_before_stop])
        self.assertEqual([("edit", CHAT, 101, "Hello")], transport.ops[sent_before_stop:])
        self.assertEqual("Hello", store.get("u1").history[-1].content)

    def test_stop_without_generation_is_invalid(self) -> None:
        controller, store, _ = make_controller(ScriptedProvider([]))
        with self.assertRaises(InvalidState):
            controller.stop("u1")
        self.assertEqual(1, len(store.get("u1").history))

    def test_retry_replaces_last_exchange(self) -> None:
        provider = ScriptedProvider(["answer"])
        controller, store, _ = make_controller(provider)

        async def scenario():
            await controller.send("u1", CHAT, "first")
            await controller.send("u1", CHAT, "second")
            return await controller.retry("u1", CHAT)

        result = asyncio.run(scenario())

        self.assertEqual("answer", result.text)
        self.assertEqual(
            ["sys", "first", "answer", "second", "answer"],
            [t.content for t in store.get("u1").history],
        )
        self.assertEqual(provider.calls[1]["messages"], provider.calls[2]["messages"])

    def test_retry_on_fresh_session_is_invalid(self) -> None:
        provider = ScriptedProvider(["x"])
        controller, _, _ = make_controller(provider)

        with self.assertRaises(InvalidState):
            asyncio.run(controller.retry("u1", CHAT))
        self.assertEqual([], provider.calls)

    def test_retry_resends_prompt_that_failed(self) -> None:
        provider = ScriptedProvider(["ok"], error_at=0)
        controller, store, _ = make_controller(provider)

        async def scenario():
            failed = await controller.send("u1", CHAT, "question")
            provider.error_at = None
            return failed, await controller.retry("u1", CHAT)

        failed, retried = asyncio.run(scenario())

        self.assertIsNotNone(failed.error)
        self.assertEqual("ok", retried.text)
        self.assertEqual(["sys", "question", "ok"], [t.content for t in store.get("u1").history])
        self.assertIsNone(store.get("u1").last_failed_prompt)

    def test_new_conversation_discards_history_and_generation(self) -> None:
        provider = ScriptedProvider(["a", "b"], hold_before=1)
        controller, store, transport = make_controller(provider)

        async def scenario():
            task = asyncio.create_task(controller.send("u1", CHAT, "hi"))
            await wait_until(lambda: bool(transport.ops))
            controller.new_conversation("u1")
            return await task

        result = asyncio.run(scenario())

        self.assertFalse(result.committed)
        session = store.get("u1")
        self.assertEqual((Turn(Role.SYSTEM, "sys"),), session.history)
        self.assertIsNone(session.active_generation)

    def test_awaited_system_prompt_consumes_next_message(self) -> None:
        provider = ScriptedProvider(["x"])
        controller, store, _ = make_controller(provider)

        controller.set_system_prompt("u1", None)
        self.assertIs(InputState.AWAITING_SYSTEM_PROMPT, store.get("u1").input_state)

        result = asyncio.run(controller.send("u1", CHAT, "  Talk like a pirate "))

        self.assertIsNone(result)
        self.assertEqual([], provider.calls)
        session = store.get("u1")
        self.assertIs(InputState.NORMAL, session.input_state)
        self.assertEqual("Talk like a pirate", session.system_prompt)
        self.assertEqual((Turn(Role.SYSTEM, "Talk like a pirate"),), session.history)

    def test_set_system_prompt_resets_history(self) -> None:
        provider = ScriptedProvider(["x"])
        controller, store, _ = make_controller(provider)
        asyncio.run(controller.send("u1", CHAT, "hi"))

        controller.set_system_prompt("u1", "Be terse")

        self.assertEqual((Turn(Role.SYSTEM, "Be terse"),), store.get("u1").history)

    def test_set_model(self) -> None:
        controller, store, _ = make_controller(ScriptedProvider([]))

        spec = controller.set_model("u1", "large")

        self.assertEqual("large", spec.id)
        self.assertEqual("large", store.get("u1").model)
        with self.assertRaises(InvalidState):
            controller.set_model("u1", "gpt-99")
        self.assertEqual("large", store.get("u1").model)

    def test_new_model_is_used_for_next_request(self) -> None:
        provider = ScriptedProvider(["x"])
        controller, _, _ = make_controller(provider)
        controller.set_model("u1", "large")

        asyncio.run(controller.send("u1", CHAT, "hi"))

        self.assertEqual("large", provider.calls[0]["model"])
        self.assertEqual(1024, provider.calls[0]["max_tokens"])

    def test_system_turn_survives_any_command_sequence(self) -> None:
        provider = ScriptedProvider(["r"])
        controller, store, _ = make_controller(provider)

        async def scenario():
            await controller.send("u1", CHAT, "a")
            await controller.retry("u1", CHAT)
            controller.new_conversation("u1")
            controller.set_system_prompt("u1", None)
            await controller.send("u1", CHAT, "new prompt")
            await controller.send("u1", CHAT, "b")
            controller.set_model("u1", "large")
            await controller.retry("u1", CHAT)

        asyncio.run(scenario())

        history = store.get("u1").history
        self.assertEqual(Turn(Role.SYSTEM, "new prompt"), history[0])
        self.assertEqual(["new prompt", "b", "r"], [t.content for t in history])


class SessionControllerEventTests(unittest.TestCase):
    def test_plain_text_is_sent(self) -> None:
        provider = ScriptedProvider(["pong"])
        controller, _, transport = make_controller(provider)

        asyncio.run(controller.handle(_event("ping")))

        self.assertEqual(["pong"], transport.texts())

    def test_retry_without_history_is_reported(self) -> None:
        controller, _, transport = make_controller(ScriptedProvider([]))

        asyncio.run(controller.handle(_event("/retry")))

        self.assertEqual(["Nothing to retry yet."], transport.texts())

    def test_stop_without_generation_is_reported(self) -> None:
        controller, _, transport = make_controller(ScriptedProvider([]))

        asyncio.run(controller.handle(_event("/stop")))

        self.assertEqual(["Nothing to stop."], transport.texts())

    def test_budget_exceeded_is_reported(self) -> None:
        catalog = make_catalog(ModelSpec("tiny", context_tokens=30, max_output_tokens=10))
        controller, _, transport = make_controller(ScriptedProvider([]), catalog=catalog)

        asyncio.run(controller.handle(_event("x" * 200)))

        self.assertEqual(1, len(transport.ops))
        self.assertIn("too long", transport.texts()[0])
        self.assertIn("/new", transport.texts()[0])

    def test_provider_failure_offers_retry(self) -> None:
        controller, _, transport = make_controller(ScriptedProvider(["x"], error_at=0))

        asyncio.run(controller.handle(_event("hi")))

        self.assertEqual(1, len(transport.ops))
        self.assertIn("upstream exploded", transport.texts()[0])
        self.assertIn("/retry", transport.texts()[0])

    def test_partial_failure_keeps_answer(self) -> None:
        controller, store, transport = make_controller(ScriptedProvider(["half", "way"], error_at=1))

        asyncio.run(controller.handle(_event("hi")))

        self.assertEqual("half", transport.texts()[0])
        self.assertIn("partial answer was kept", transport.texts()[-1])
        self.assertEqual("half", store.get("u1").history[-1].content)

    def test_prompt_command_flow(self) -> None:
        provider = ScriptedProvider(["x"])
        controller, store, transport = make_controller(provider)

        async def scenario():
            await controller.handle(_event("/prompt"))
            await controller.handle(_event("You are a cat."))

        asyncio.run(scenario())

        self.assertEqual(
            [
                "Send the new system prompt as your next message.",
                "System prompt updated. Started a new conversation.",
            ],
            transport.texts(),
        )
        self.assertEqual("You are a cat.", store.get("u1").system_prompt)
        self.assertEqual([], provider.calls)

    def test_model_command(self) -> None:
        controller, store, transport = make_controller(ScriptedProvider([]))

        async def scenario():
            await controller.handle(_event("/model"))
            await controller.handle(_event("/set_model large"))
            await controller.handle(_event("/model nope"))

        asyncio.run(scenario())

        texts = transport.texts()
        self.assertEqual("Current model: small. Available: small, large", texts[0])
        self.assertEqual("Model set to large.", texts[1])
        self.assertTrue(texts[2].startswith("Unknown model: nope"))
        self.assertEqual("large", store.get("u1").model)

    def test_template_command_answers_without_touching_history(self) -> None:
        provider = ScriptedProvider(["Two, Phobos and Deimos.\n\nQ: And Venus?"])
        controller, store, transport = make_controller(provider)

        asyncio.run(controller.handle(_event("/q How many moons does Mars have?")))

        self.assertEqual(["Two, Phobos and Deimos."], transport.texts())
        self.assertEqual([], provider.calls)
        call = provider.complete_calls[0]
        self.assertEqual("small", call["model"])
        self.assertEqual(100, call["max_tokens"])
        self.assertTrue(call["messages"][-1]["content"].endswith("Q: How many moons does Mars have?\nA:"))
        self.assertEqual(1, len(store.get("u1").history))

    def test_template_command_needs_input(self) -> None:
        provider = ScriptedProvider(["ls"])
        controller, _, transport = make_controller(provider)

        asyncio.run(controller.handle(_event("/bash")))

        self.assertEqual(["Usage: /bash <text>"], transport.texts())
        self.assertEqual([], provider.complete_calls)

    def test_template_provider_error_is_reported(self) -> None:
        controller, _, transport = make_controller(ScriptedProvider(["x"], error_at=0))

        asyncio.run(controller.handle(_event("/marv what time is it")))

        self.assertEqual(["Error: upstream exploded"], transport.texts())

    def test_long_template_answer_is_split_at_message_limit(self) -> None:
        controller, _, transport = make_controller(ScriptedProvider(["abcdefghijkl"]), limit=6)

        asyncio.run(controller.handle(_event("/analogy time")))

        self.assertEqual(["abcde", "fghij", "kl"], transport.texts())
        self.assertEqual(["create"] * 3, [op[0] for op in transport.ops])

    def test_help_lists_template_commands(self) -> None:
        controller, _, transport = make_controller(ScriptedProvider([]))

        asyncio.run(controller.handle(_event("/help")))

        self.assertIn("/bash <text> - convert text to bash command", transport.texts()[0])

    def test_new_help_and_unknown_commands(self) -> None:
        controller, _, transport = make_controller(ScriptedProvider([]))

        async def scenario():
            await controller.handle(_event("/new"))
            await controller.handle(_event("/help"))
            await controller.handle(_event("/bogus"))

        asyncio.run(scenario())

        texts = transport.texts()
        self.assertEqual("Started a new conversation.", texts[0])
        self.assertIn("/retry", texts[1])
        self.assertIn("Current model: small", texts[1])
        self.assertEqual("Unknown command: /bogus. Help: /help", texts[2])


if __name__ == "__main__":
    unittest.main()
