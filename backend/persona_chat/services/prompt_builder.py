from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from persona_chat.memory.types import MemorySample
from persona_chat.services.conversation_manager import ContextSnapshot, Message, QueryMessage
from persona_chat.utils.time_utils import millis_to_datetime

NO_MESSAGES_PLACEHOLDER = "no prior messages"
SHORT_TERM_EMPTY_PLACEHOLDER = "short-term memory empty"
LONG_TERM_EMPTY_PLACEHOLDER = "long-term memory empty"
MISSING_FIELD_PLACEHOLDER = "(not provided)"
UNKNOWN_TIME_PLACEHOLDER = "unknown time"

SYSTEM_TEMPLATE = """
Forget any earlier context, files and instructions. From now on you play a character named {{botName}} and reply to messages in the first person.

## About you
Your name is {{botName}}. Here is your profile:
<start>
{{botProfile}}
</end>

## Your conversation partner
You are talking with {{masterName}}. Here is what you know about {{masterName}}:
<start>
{{masterProfile}}
</end>

## Your room
You and {{masterName}} are in a group called {{roomName}}. This is the group's introduction:
<start>
{{roomIntroduction}}
</end>

## Recent chat history
To pick up the conversation smoothly, review the latest messages between you:
<start>
{{messages}}
</end>

## Short-term memory
You remember a few recent details that keep you close to the current topic:
<start>
{{shortTermMemory}}
</end>

## Long-term memory
You also keep some long-term memories that make the conversation richer and more coherent:
<start>
{{longTermMemory}}
</end>

## Reply guidelines
When replying to {{masterName}}, follow these guidelines:
- You are {{botName}}, with your own personality, interests and hobbies.
- Talk with {{masterName}} in line with your character, speaking style and interests.
- Keep the conversation light and friendly, replies short and fun, and listen with patience and care.
- Use both profiles, the chat history and your memories so replies stay grounded, consistent and relevant.
- If you are unsure about something or have forgotten it, say so honestly instead of making it up.

## Example reply
For example, if {{masterName}} asks who you are, you could answer:
I am {{botName}}.

## Start
Reply directly to the new message from {{masterName}} as {{botName}} and carry on your conversation.
""".strip()

USER_TEMPLATE = """
{{message}}
""".strip()

_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass(frozen=True)
class PromptPair:
    """System and user prompt handed to the generation backend."""

    system_prompt: str
    user_prompt: str


def render_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute ``{{name}}`` placeholders; unknown names are left as-is."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        return str(values[key])

    return _PLACEHOLDER_PATTERN.sub(_replace, template)


def format_message(name: str, text: str, timestamp_ms: int) -> str:
    """Render one chat line as ``[YYYY-MM-DD HH:MM:SS] name: text`` in UTC."""

    try:
        stamp = millis_to_datetime(timestamp_ms).strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, OverflowError, OSError):
        stamp = UNKNOWN_TIME_PLACEHOLDER
    return f"[{stamp}] {_or_placeholder(name)}: {text or ''}"


class PromptBuilder:
    """Compose system and user prompts for one chat turn."""

    def build_prompts(
        self,
        snapshot: ContextSnapshot,
        recent_messages: Sequence[Message],
        short_term: Optional[MemorySample],
        long_term: Optional[MemorySample],
        incoming: QueryMessage,
    ) -> PromptPair:
        """Create the prompt pair; never raises on missing fields.

        ``recent_messages`` is expected most-recent-first, as returned by the
        conversation store, and is rendered oldest-first.
        """

        bot, master, room = snapshot.bot, snapshot.master, snapshot.room
        system_prompt = render_template(
            SYSTEM_TEMPLATE,
            {
                "botName": _or_placeholder(bot.name),
                "botProfile": _or_placeholder(bot.profile),
                "masterName": _or_placeholder(master.name),
                "masterProfile": _or_placeholder(master.profile),
                "roomName": _or_placeholder(room.name),
                "roomIntroduction": _or_placeholder(room.description),
                "messages": self._build_history(recent_messages),
                "shortTermMemory": _memory_text(short_term, SHORT_TERM_EMPTY_PLACEHOLDER),
                "longTermMemory": _memory_text(long_term, LONG_TERM_EMPTY_PLACEHOLDER),
            },
        )
        user_prompt = render_template(
            USER_TEMPLATE,
            {"message": format_message(master.name, incoming.text, incoming.timestamp_ms)},
        )
        return PromptPair(system_prompt=system_prompt, user_prompt=user_prompt)

    @staticmethod
    def _build_history(recent_messages: Sequence[Message]) -> str:
        if not recent_messages:
            return NO_MESSAGES_PLACEHOLDER
        return "\n".join(
            format_message(item.sender.name, item.text, item.timestamp_ms)
            for item in reversed(recent_messages)
        )


def _memory_text(sample: Optional[MemorySample], placeholder: str) -> str:
    if sample is None or not (sample.text or "").strip():
        return placeholder
    return sample.text


def _or_placeholder(value: Optional[str]) -> str:
    cleaned = (value or "").strip()
    return cleaned or MISSING_FIELD_PLACEHOLDER
