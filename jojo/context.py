# jojo/context.py
"""Build the conversational context handed to the model.

The stored log is never edited here; trimming only affects what is presented
to the provider.
"""
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .store import ASSISTANT_ROLE, USER_ROLE, MessageStore

DEFAULT_WINDOW = 20


class FileAttachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = "file"
    type: str = "application/octet-stream"
    content: str = ""  # raw text when is_text, otherwise base64
    is_text: bool = Field(default=False, alias="isText")


def _entry(role: str, text: str) -> Dict[str, str]:
    return {"role": USER_ROLE if role == USER_ROLE else ASSISTANT_ROLE, "content": text}


def trim_leading_non_user(entries: List[Dict[str, str]]) -> List[Dict[str, str]]:
    start = 0
    while start < len(entries) and entries[start]["role"] != USER_ROLE:
        start += 1
    return entries[start:]


def _client_entry_text(item: Dict[str, Any]) -> Optional[str]:
    content = item.get("content")
    if isinstance(content, str):
        return content
    parts = item.get("parts")
    if isinstance(parts, list):
        texts = [p.get("text") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        if texts:
            return "".join(texts)
    return None


class ContextAssembler:
    def __init__(self, store: MessageStore, window: int = DEFAULT_WINDOW):
        if window < 1:
            raise ValueError("window must be positive")
        self.store = store
        self.window = window

    def assemble(self, user_id: int, session_id: Optional[str]) -> List[Dict[str, str]]:
        rows = self.store.query(user_id, session_id, limit=self.window, newest_first=True)
        entries = [_entry(row.sender, row.message) for row in reversed(rows)]
        return trim_leading_non_user(entries)

    def from_client_history(self, history: Optional[Iterable[Any]]) -> List[Dict[str, str]]:
        """Normalise a client-supplied history (`{role, content}` or `{role, parts}`)."""
        if not history:
            return []
        entries = []
        for item in history:
            if not isinstance(item, dict):
                continue
            text = _client_entry_text(item)
            if text is None:
                continue
            entries.append(_entry(str(item.get("role", "")), text))
        return trim_leading_non_user(entries[-self.window:])


def build_turn_parts(message: Optional[str], files: Optional[List[FileAttachment]] = None) -> List[Dict[str, Any]]:
    """Content parts of the new, not-yet-sent turn."""
    parts: List[Dict[str, Any]] = []
    if message:
        parts.append({"type": "text", "text": message})
    for f in files or []:
        if f.is_text:
            parts.append({"type": "text", "text": f"\n\n[File: {f.name}]\n{f.content}\n"})
        else:
            parts.append({"type": "image_url", "image_url": {"url": f"data:{f.type};base64,{f.content}"}})
    return parts
