"""
Chat orchestration: file grounding, context assembly, upstream relay and log update
"""
import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from chatrelay.core.config import Settings, get_settings
from chatrelay.core.conversation_store import (ASSISTANT, USER,
                                               ConversationStore, Turn,
                                               get_conversation_store)
from chatrelay.core.errors import UpstreamError, ValidationError
from chatrelay.core.logging_config import LoggingConfig
from chatrelay.core.prompt_assembler import build_context
from chatrelay.core.provider_client import ProviderClient, get_provider_client
from chatrelay.core.system_policy import SystemPolicy, get_system_policy
from chatrelay.core.text_extractor import decode_upload, extract_text, truncate

logger = LoggingConfig.get_logger(__name__)


@dataclass
class UploadedFile:
    """File attached to a chat request: name plus base64 payload"""
    name: str
    data: str


@dataclass
class ChatResult:
    reply: str
    history: List[Turn]


def without_answered(turns: List[Turn], message: str) -> List[Turn]:
    """
    Drop the trailing exchange that already answered ``message``.

    Regeneration asks the same question again, so the model should see the
    conversation as it was before the first answer.
    """
    if (
        len(turns) >= 2
        and turns[-2] == Turn(USER, message)
        and turns[-1].role == ASSISTANT
    ):
        return turns[:-2]
    return turns


class ChatService:
    """
    Runs one chat turn for a user.

    The stored log is read, the context assembled and the provider called
    while holding the user's lock, so overlapping requests for the same user
    see each other's turns in order. A failed turn stores nothing, except in
    streaming mode where whatever was already relayed is kept.
    """

    def __init__(
        self,
        client: ProviderClient,
        store: ConversationStore,
        policy: SystemPolicy,
        settings: Optional[Settings] = None,
    ):
        self.client = client
        self.store = store
        self.policy = policy
        self.settings = settings or get_settings()

    def stop_result(self) -> ChatResult:
        """Acknowledgement for stop=true; neither the store nor the provider is touched"""
        return ChatResult(reply=self.settings.stop_acknowledgement, history=[])

    @staticmethod
    def _require_message(message: Optional[str], field: str = "message") -> str:
        if message is None or not message.strip():
            raise ValidationError(f"{field} is required")
        return message

    async def _file_text(self, file: Optional[UploadedFile]) -> Optional[str]:
        if file is None:
            return None
        if not file.name or not file.data:
            raise ValidationError("file requires both name and data")
        raw = decode_upload(file.data)
        # Parsers are synchronous; keep them off the event loop
        text = await asyncio.to_thread(extract_text, file.name, raw)
        return truncate(text, self.settings.max_file_chars)

    def _context(
        self,
        user_id: Optional[str],
        message: str,
        history: Optional[List[Turn]],
        file: Optional[UploadedFile],
        file_text: Optional[str],
        regenerating: bool = False,
    ):
        # An explicit history only replaces what the model sees; the stored
        # log is still the one that gets appended to.
        if history is not None:
            context_history = history
        else:
            context_history = self.store.get(user_id)
            if regenerating:
                context_history = without_answered(context_history, message)
        return build_context(
            self.policy.prompt,
            file_text,
            context_history,
            message,
            file_name=file.name if file else None,
            max_turns=self.settings.history_max_turns,
        )

    async def chat(
        self,
        message: Optional[str],
        user_id: Optional[str] = None,
        history: Optional[List[Turn]] = None,
        file: Optional[UploadedFile] = None,
        max_tokens: Optional[int] = None,
        regenerating: bool = False,
    ) -> ChatResult:
        """Run a blocking chat turn and return the reply plus the updated stored log"""
        message = self._require_message(message)
        file_text = await self._file_text(file)

        async with self.store.lock(user_id):
            messages = self._context(user_id, message, history, file, file_text, regenerating)
            logger.info(
                "Relaying chat turn",
                extra={"user_id": user_id, "context_entries": len(messages), "has_file": file is not None}
            )
            reply = await self.client.complete(messages, max_tokens=max_tokens)
            self.store.extend(user_id, [Turn(USER, message), Turn(ASSISTANT, reply)])
            return ChatResult(reply=reply, history=self.store.get(user_id))

    async def chat_stream(
        self,
        message: Optional[str],
        user_id: Optional[str] = None,
        history: Optional[List[Turn]] = None,
        file: Optional[UploadedFile] = None,
        max_tokens: Optional[int] = None,
        regenerating: bool = False,
    ) -> AsyncIterator[str]:
        """
        Run a streaming chat turn, yielding provider chunks as they arrive.

        An UpstreamError before the first chunk propagates. After output has
        started, a broken stream or a closed generator (client disconnect)
        just ends the stream; the turn is stored with the text relayed so far.
        """
        message = self._require_message(message)
        file_text = await self._file_text(file)

        async with self.store.lock(user_id):
            messages = self._context(user_id, message, history, file, file_text, regenerating)
            logger.info(
                "Relaying streaming chat turn",
                extra={"user_id": user_id, "context_entries": len(messages), "has_file": file is not None}
            )
            received: List[str] = []
            completed = False
            upstream = self.client.complete_stream(messages, max_tokens=max_tokens)
            try:
                async for chunk in upstream:
                    received.append(chunk)
                    yield chunk
                completed = True
            except UpstreamError as e:
                if not received:
                    raise
                logger.warning(
                    "Provider stream failed after partial output",
                    extra={"user_id": user_id, "chunks": len(received), "error": e.message}
                )
            finally:
                # Closing the provider stream aborts the upstream request
                await upstream.aclose()
                if received or completed:
                    self.store.extend(user_id, [Turn(USER, message), Turn(ASSISTANT, "".join(received))])
                if not completed:
                    logger.info(
                        "Streaming turn ended early",
                        extra={"user_id": user_id, "chunks": len(received)}
                    )

    async def regenerate(
        self,
        last_message: Optional[str],
        user_id: Optional[str] = None,
        history: Optional[List[Turn]] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatResult:
        """Re-run the chat path with the last message; the earlier reply stays in the log"""
        last_message = self._require_message(last_message, field="lastMessage")
        return await self.chat(
            last_message, user_id=user_id, history=history, max_tokens=max_tokens, regenerating=True
        )

    def regenerate_stream(
        self,
        last_message: Optional[str],
        user_id: Optional[str] = None,
        history: Optional[List[Turn]] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        last_message = self._require_message(last_message, field="lastMessage")
        return self.chat_stream(
            last_message, user_id=user_id, history=history, max_tokens=max_tokens, regenerating=True
        )


def get_chat_service() -> ChatService:
    """Chat service wired to the process-wide singletons"""
    return ChatService(
        client=get_provider_client(),
        store=get_conversation_store(),
        policy=get_system_policy(),
    )
