# jojo/store.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import asc, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .models import ChatMessage

logger = logging.getLogger(__name__)

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
ROLES = (USER_ROLE, ASSISTANT_ROLE)


@dataclass
class SessionSummary:
    session_id: Optional[str]
    message: str
    timestamp: datetime


def _partition(stmt, user_id: int, session_id: Optional[str]):
    stmt = stmt.where(ChatMessage.user_id == user_id)
    if session_id is None:
        return stmt.where(ChatMessage.session_id.is_(None))
    return stmt.where(ChatMessage.session_id == session_id)


class MessageStore:
    """Append-only chat log partitioned by (user, session).

    Every method opens its own session, so a store can be shared by request
    handlers running in the threadpool.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def append(self, user_id: int, session_id: Optional[str], role: str, text: str) -> ChatMessage:
        if role not in ROLES:
            raise ValueError(f"Unknown role {role!r}")
        msg = ChatMessage(user_id=user_id, session_id=session_id, sender=role, message=text)
        with self._session_factory() as db:
            db.add(msg)
            db.commit()
            db.refresh(msg)
        return msg

    def query(
        self,
        user_id: int,
        session_id: Optional[str],
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> List[ChatMessage]:
        order = (desc(ChatMessage.timestamp), desc(ChatMessage.id)) if newest_first else (
            asc(ChatMessage.timestamp),
            asc(ChatMessage.id),
        )
        stmt = _partition(select(ChatMessage), user_id, session_id).order_by(*order)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session_factory() as db:
            return list(db.scalars(stmt).all())

    def transcript(self, user_id: int, session_id: Optional[str]) -> List[ChatMessage]:
        try:
            return self.query(user_id, session_id)
        except SQLAlchemyError:
            logger.exception("Failed to load transcript for user %s session %s", user_id, session_id)
            return []

    def list_sessions(self, user_id: int) -> List[SessionSummary]:
        """One entry per session: its first user message and its last activity."""
        first_ids = (
            select(func.min(ChatMessage.id))
            .where(ChatMessage.user_id == user_id, ChatMessage.sender == USER_ROLE)
            .group_by(ChatMessage.session_id)
        )
        last_activity_stmt = (
            select(ChatMessage.session_id, func.max(ChatMessage.timestamp))
            .where(ChatMessage.user_id == user_id)
            .group_by(ChatMessage.session_id)
        )
        try:
            with self._session_factory() as db:
                firsts = db.scalars(select(ChatMessage).where(ChatMessage.id.in_(first_ids))).all()
                last_activity: Dict[Optional[str], datetime] = {
                    sid: last for sid, last in db.execute(last_activity_stmt).all()
                }
        except SQLAlchemyError:
            logger.exception("Failed to list sessions for user %s", user_id)
            return []

        summaries = [
            SessionSummary(
                session_id=m.session_id,
                message=m.message,
                timestamp=last_activity.get(m.session_id, m.timestamp),
            )
            for m in firsts
        ]
        summaries.sort(key=lambda s: s.timestamp, reverse=True)
        return summaries
