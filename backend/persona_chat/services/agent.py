from __future__ import annotations

import logging
from typing import Callable

from persona_chat.services.chat_transport import AskHandler, ChatTransport
from persona_chat.services.conversation_manager import ConversationManager
from persona_chat.services.orchestrator import ResponseOrchestrator

logger = logging.getLogger(__name__)

TransportFactory = Callable[[AskHandler], ChatTransport]


class ChatAgent:
    """Own the transport lifecycle and wire it to the orchestrator."""

    def __init__(
        self,
        conversation: ConversationManager,
        orchestrator: ResponseOrchestrator,
        transport_factory: TransportFactory = ChatTransport,
    ) -> None:
        self._conversation = conversation
        self._orchestrator = orchestrator
        self.transport = transport_factory(orchestrator.ask)

    async def run(self) -> None:
        """Bootstrap the default room, then start accepting messages."""

        room = await self._conversation.init()
        await self.transport.start()
        logger.info("Agent ready in room %s (%s)", room.id, room.name)

    async def stop(self) -> None:
        """Stop the transport and cancel in-flight generations."""

        await self.transport.stop()
        await self._orchestrator.shutdown()
