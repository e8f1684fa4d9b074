from __future__ import annotations

from persona_chat.memory.types import MemorySample
from persona_chat.services.conversation_manager import (
    ContextSnapshot,
    Message,
    PersonaRef,
    QueryMessage,
    RoomInfo,
)
from persona_chat.services.prompt_builder import (
    LONG_TERM_EMPTY_PLACEHOLDER,
    MISSING_FIELD_PLACEHOLDER,
    NO_MESSAGES_PLACEHOLDER,
    SHORT_TERM_EMPTY_PLACEHOLDER,
    UNKNOWN_TIME_PLACEHOLDER,
    PromptBuilder,
    format_message,
    render_template,
)

BOT = PersonaRef(id="bot", name="Echo", profile="Loves puns.")
MASTER = PersonaRef(id="master", name="Alice", profile="Works night shifts.")
ROOM = RoomInfo(id="room", name="Lounge", description="Weekend chatter.")


def make_snapshot(**overrides) -> ContextSnapshot:
    values = {"bot": BOT, "master": MASTER, "room": ROOM, "memory": None}
    values.update(overrides)
    return ContextSnapshot(**values)


def test_empty_history_and_memory_use_placeholders() -> None:
    prompts = PromptBuilder().build_prompts(
        make_snapshot(), [], None, None, QueryMessage(text="hi", timestamp_ms=0)
    )

    assert NO_MESSAGES_PLACEHOLDER in prompts.system_prompt
    assert SHORT_TERM_EMPTY_PLACEHOLDER in prompts.system_prompt
    assert LONG_TERM_EMPTY_PLACEHOLDER in prompts.system_prompt
    assert "{{" not in prompts.system_prompt


def test_short_term_sample_without_long_term() -> None:
    prompts = PromptBuilder().build_prompts(
        make_snapshot(),
        [],
        MemorySample(text="likes tea"),
        None,
        QueryMessage(text="hi", timestamp_ms=0),
    )

    assert "likes tea" in prompts.system_prompt
    assert LONG_TERM_EMPTY_PLACEHOLDER in prompts.system_prompt
    assert SHORT_TERM_EMPTY_PLACEHOLDER not in prompts.system_prompt


def test_history_is_rendered_oldest_first() -> None:
    newest_first = [
        Message(sender=BOT, text="msg-three", timestamp_ms=3_000),
        Message(sender=MASTER, text="msg-two", timestamp_ms=2_000),
        Message(sender=BOT, text="msg-one", timestamp_ms=1_000),
    ]

    prompts = PromptBuilder().build_prompts(
        make_snapshot(), newest_first, None, None, QueryMessage(text="hi", timestamp_ms=4_000)
    )

    system_prompt = prompts.system_prompt
    assert NO_MESSAGES_PLACEHOLDER not in system_prompt
    assert system_prompt.index("msg-one") < system_prompt.index("msg-two") < system_prompt.index("msg-three")
    assert format_message("Alice", "msg-two", 2_000) in system_prompt


def test_personas_and_room_are_substituted() -> None:
    prompts = PromptBuilder().build_prompts(
        make_snapshot(), [], None, None, QueryMessage(text="hi", timestamp_ms=0)
    )

    for expected in ["Echo", "Loves puns.", "Alice", "Works night shifts.", "Lounge", "Weekend chatter."]:
        assert expected in prompts.system_prompt


def test_user_prompt_is_incoming_message_formatted_like_history() -> None:
    incoming = QueryMessage(text="What's up?", timestamp_ms=1_700_000_000_000)

    prompts = PromptBuilder().build_prompts(make_snapshot(), [], None, None, incoming)

    assert prompts.user_prompt == format_message("Alice", "What's up?", 1_700_000_000_000)
    assert prompts.user_prompt == "[2023-11-14 22:13:20] Alice: What's up?"


def test_missing_fields_fall_back_to_placeholder() -> None:
    snapshot = make_snapshot(
        master=PersonaRef(id="m", name="", profile=""),
        room=RoomInfo(id="r", name="Lounge", description="  "),
    )

    prompts = PromptBuilder().build_prompts(
        snapshot, [], MemorySample(text=""), None, QueryMessage(text="hi", timestamp_ms=0)
    )

    assert MISSING_FIELD_PLACEHOLDER in prompts.system_prompt
    assert SHORT_TERM_EMPTY_PLACEHOLDER in prompts.system_prompt
    assert prompts.user_prompt.endswith(f"{MISSING_FIELD_PLACEHOLDER}: hi")


def test_build_is_deterministic() -> None:
    builder = PromptBuilder()
    args = (make_snapshot(), [], MemorySample(text="likes tea"), None, QueryMessage(text="hi", timestamp_ms=5))

    assert builder.build_prompts(*args) == builder.build_prompts(*args)


def test_render_template_leaves_unknown_placeholders() -> None:
    assert render_template("{{a}} and {{ b }} and {{c}}", {"a": "1", "b": "2"}) == "1 and 2 and {{c}}"


def test_unrepresentable_timestamps_render_placeholder() -> None:
    builder = PromptBuilder()
    history = [Message(sender=BOT, text="from the far future", timestamp_ms=10**20)]

    for timestamp_ms in (10**15, 10**20, -(10**20)):
        prompts = builder.build_prompts(
            make_snapshot(), history, None, None, QueryMessage(text="hi", timestamp_ms=timestamp_ms)
        )

        assert prompts.user_prompt == f"[{UNKNOWN_TIME_PLACEHOLDER}] Alice: hi"
        assert f"[{UNKNOWN_TIME_PLACEHOLDER}] Echo: from the far future" in prompts.system_prompt
