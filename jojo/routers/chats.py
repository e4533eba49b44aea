# jojo/routers/chats.py
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from ..config import Settings
from ..context import ContextAssembler, FileAttachment, build_turn_parts
from ..errors import ConfigError, ValidationError
from ..fallback import GenerationOptions, ModelFallbackExecutor, StreamHandle
from ..recorder import TurnRecorder
from ..store import MessageStore
from .auth import current_login_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

# path values the browser client sends for conversations that predate sessions
NULL_SESSION_IDS = ("null", "undefined")


class ChatBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    files: Optional[List[FileAttachment]] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId", max_length=64)
    history: Optional[List[Dict[str, Any]]] = None


def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _wants_stream(request: Request, settings: Settings) -> bool:
    return settings.chat_streaming or "text/event-stream" in request.headers.get("accept", "")


def _timestamp(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


@router.get("/history")
async def chat_history(request: Request, current_user: current_login_user):
    store: MessageStore = request.app.state.message_store
    sessions = await run_in_threadpool(store.list_sessions, current_user.id)
    return [
        {"session_id": s.session_id, "message": s.message, "timestamp": _timestamp(s.timestamp)}
        for s in sessions
    ]


@router.get("/session/{session_id}")
async def session_transcript(session_id: str, request: Request, current_user: current_login_user):
    store: MessageStore = request.app.state.message_store
    key = None if session_id in NULL_SESSION_IDS else session_id
    rows = await run_in_threadpool(store.transcript, current_user.id, key)
    return [{"message": m.message, "sender": m.sender, "timestamp": _timestamp(m.timestamp)} for m in rows]


@router.post("/chat")
async def chat(body: ChatBody, request: Request, current_user: current_login_user):
    state = request.app.state
    settings: Settings = state.settings

    if not body.message and not body.files:
        raise ValidationError("Message or file is required")
    if state.executor is None:
        raise ConfigError("GEMINI_API_KEY is not configured on the server.")

    assembler: ContextAssembler = state.context_assembler
    recorder: TurnRecorder = state.turn_recorder
    executor: ModelFallbackExecutor = state.executor

    if body.session_id:
        session_id = body.session_id
        context = await run_in_threadpool(assembler.assemble, current_user.id, session_id)
    else:
        session_id = uuid4().hex[:16]
        context = assembler.from_client_history(body.history)

    await recorder.record_user_turn(current_user.id, session_id, body.message, body.files)

    parts = build_turn_parts(body.message, body.files)
    options = GenerationOptions(max_output_tokens=settings.max_output_tokens, temperature=settings.temperature)

    if not _wants_stream(request, settings):
        result = await executor.generate(context, parts, settings.system_prompt, options)
        await recorder.record_assistant_turn(current_user.id, session_id, result.text)
        return {"reply": result.text, "sessionId": session_id, "model": result.model}

    # headers go out only once a candidate has produced its first fragment
    handle = await executor.open_stream(context, parts, settings.system_prompt, options)
    return StreamingResponse(
        _relay(handle, recorder, current_user.id, session_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


async def _relay(handle: StreamHandle, recorder: TurnRecorder, user_id: int, session_id: str) -> AsyncIterator[str]:
    fragments: List[str] = []
    try:
        async for text in handle.chunks():
            fragments.append(text)
            yield _sse({"chunk": text})
    except Exception as exc:
        # bytes are already out, so no other candidate can take over
        logger.error("Stream from %s failed mid-reply: %s", handle.model, exc)
        yield _sse({"error": "AI Error: the reply was interrupted"})
        return
    except (GeneratorExit, asyncio.CancelledError):
        logger.info("Client disconnected from session %s; reply not recorded", session_id)
        raise
    finally:
        await handle.aclose()

    try:
        await recorder.record_assistant_turn(user_id, session_id, "".join(fragments))
    except Exception:
        logger.exception("Could not record the reply for session %s", session_id)
        yield _sse({"error": "The reply could not be saved"})
        return
    yield _sse({"done": True, "sessionId": session_id})
