"""
Chat API routes with optional streaming
"""
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from chatrelay.core.conversation_store import Turn
from chatrelay.core.logging_config import LoggingConfig
from chatrelay.services.chat_service import (ChatResult, ChatService,
                                             UploadedFile, get_chat_service)

router = APIRouter(prefix="/api", tags=["chat"])
logger = LoggingConfig.get_logger(__name__)


class HistoryItem(BaseModel):
    """One turn as exchanged with the frontend"""
    type: str = Field(..., description="'user' or 'assistant' ('bot' and 'ai' are accepted)")
    text: str = Field(default="", description="Turn text")


class FilePayload(BaseModel):
    """Uploaded document"""
    name: str = Field(..., description="File name, used to pick the extractor")
    data: str = Field(..., description="Base64 payload or data URL")


class ChatRequest(BaseModel):
    """Chat request model"""
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = Field(default=None, description="User message (required)")
    history: Optional[List[HistoryItem]] = Field(
        default=None,
        description="Overrides the stored conversation as model context"
    )
    file: Optional[FilePayload] = Field(default=None, description="Document to ground the reply")
    stop: bool = Field(default=False, description="Acknowledge without calling the provider")
    user_id: Optional[str] = Field(default=None, alias="userId", description="Conversation owner")
    max_tokens: Optional[int] = Field(default=None, ge=1, description="Completion token budget")
    stream: bool = Field(default=False, description="Stream the reply as text/event-stream")


class RegenerateRequest(BaseModel):
    """Regenerate request model"""
    model_config = ConfigDict(populate_by_name=True)

    last_message: Optional[str] = Field(default=None, alias="lastMessage", description="Message to answer again")
    history: Optional[List[HistoryItem]] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    max_tokens: Optional[int] = Field(default=None, ge=1)
    stream: bool = False


class ChatResponse(BaseModel):
    """Chat response model"""
    reply: str
    history: List[HistoryItem]


def history_to_turns(history: Optional[List[HistoryItem]]) -> Optional[List[Turn]]:
    if history is None:
        return None
    return [Turn.from_wire(item.type, item.text) for item in history]


def _to_response(result: ChatResult) -> ChatResponse:
    return ChatResponse(
        reply=result.reply,
        history=[HistoryItem(**turn.to_wire()) for turn in result.history],
    )


async def _stream_response(chunks: AsyncIterator[str]) -> StreamingResponse:
    """
    Wrap a chunk iterator in an event-stream response.

    The first chunk is pulled before the response starts so that validation,
    extraction and upstream errors still produce a JSON error status.
    """
    try:
        first: Optional[str] = await chunks.__anext__()
    except StopAsyncIteration:
        first = None

    async def relay():
        try:
            if first is None:
                return
            yield first
            async for chunk in chunks:
                yield chunk
        finally:
            await chunks.aclose()

    return StreamingResponse(
        relay(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/chat", response_model=ChatResponse)
async def chat(
    chat_request: ChatRequest,
    service: ChatService = Depends(get_chat_service),
):
    """
    Send a message and get the provider's reply.

    With ``stream`` the reply is relayed chunk by chunk; the conversation log
    is updated once the stream ends.
    """
    if chat_request.stop:
        logger.info("Stop requested", extra={"user_id": chat_request.user_id})
        return _to_response(service.stop_result())

    history = history_to_turns(chat_request.history)
    upload = None
    if chat_request.file is not None:
        upload = UploadedFile(name=chat_request.file.name, data=chat_request.file.data)

    if chat_request.stream:
        return await _stream_response(service.chat_stream(
            chat_request.message,
            user_id=chat_request.user_id,
            history=history,
            file=upload,
            max_tokens=chat_request.max_tokens,
        ))

    result = await service.chat(
        chat_request.message,
        user_id=chat_request.user_id,
        history=history,
        file=upload,
        max_tokens=chat_request.max_tokens,
    )
    return _to_response(result)


@router.post("/regenerate", response_model=ChatResponse)
async def regenerate(
    regenerate_request: RegenerateRequest,
    service: ChatService = Depends(get_chat_service),
):
    """Answer the last message again; the new reply is appended to the log"""
    history = history_to_turns(regenerate_request.history)

    if regenerate_request.stream:
        return await _stream_response(service.regenerate_stream(
            regenerate_request.last_message,
            user_id=regenerate_request.user_id,
            history=history,
            max_tokens=regenerate_request.max_tokens,
        ))

    result = await service.regenerate(
        regenerate_request.last_message,
        user_id=regenerate_request.user_id,
        history=history,
        max_tokens=regenerate_request.max_tokens,
    )
    return _to_response(result)
