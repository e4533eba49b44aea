# jojo/recorder.py
from typing import List, Optional

from starlette.concurrency import run_in_threadpool

from .context import FileAttachment
from .models import ChatMessage
from .store import ASSISTANT_ROLE, USER_ROLE, MessageStore


def user_turn_text(message: Optional[str], files: Optional[List[FileAttachment]] = None) -> str:
    text = message or ""
    if files:
        suffix = f"[Attached {len(files)} file(s)]"
        text = f"{text} {suffix}" if text else suffix
    return text


class TurnRecorder:
    """Writes one user turn per request and one assistant turn per reply.

    The user turn is written before generation and is kept if generation
    fails, so a request never loses what the user asked.
    """

    def __init__(self, store: MessageStore):
        self.store = store

    async def record_user_turn(
        self,
        user_id: int,
        session_id: Optional[str],
        message: Optional[str],
        files: Optional[List[FileAttachment]] = None,
    ) -> ChatMessage:
        return await run_in_threadpool(
            self.store.append, user_id, session_id, USER_ROLE, user_turn_text(message, files)
        )

    async def record_assistant_turn(self, user_id: int, session_id: Optional[str], reply: str) -> ChatMessage:
        return await run_in_threadpool(self.store.append, user_id, session_id, ASSISTANT_ROLE, reply)
