from __future__ import annotations
import json
import logging
import datetime as dt
from pathlib import Path
from typing import Dict, List, Optional

from askai.core.types import Message, ROLES

LOGGER = logging.getLogger(__name__)


def _now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


class HistoryStore:
    """
    Conversation history kept as JSON lines in a single file.
    - 'conversation' records: {type, id, model, ts}
    - 'message' records: {type, conversation_id, role, content, prompt_tokens, completion_tokens, ts}
    - If path is None: in-memory only
    - An existing file is loaded on construction so conversations can be resumed
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path).expanduser() if path else None
        self._models: Dict[int, str] = {}
        self._messages: Dict[int, List[Message]] = {}

        if self._path:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if self._path.exists() and self._path.stat().st_size > 0:
                self._load_from_file()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def create_conversation(self, model: str) -> int:
        conv_id = (self.last_conversation_id() or 0) + 1
        self._write({"type": "conversation", "id": conv_id, "model": model, "ts": _now()})
        self._models[conv_id] = model
        self._messages[conv_id] = []
        return conv_id

    def add_conversation_item(
        self,
        conversation_id: int,
        role: str,
        content: str,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
    ) -> None:
        if conversation_id not in self._models:
            raise KeyError(f"Unknown conversation {conversation_id}")
        if role not in ROLES:
            raise ValueError(f"Unknown role '{role}'. Expected one of {ROLES}")
        self._write({
            "type": "message",
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "ts": _now(),
        })
        self._messages[conversation_id].append(
            Message(role=role, content=content,
                    prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
        )

    def get_messages_for_llm(self, conversation_id: int, limit: int) -> List[Message]:
        """Last `limit` messages of the conversation, oldest first."""
        msgs = self._messages.get(conversation_id, [])
        if limit <= 0:
            return []
        return list(msgs[-limit:])

    def last_conversation_id(self) -> Optional[int]:
        return max(self._models) if self._models else None

    def conversation_model(self, conversation_id: int) -> Optional[str]:
        return self._models.get(conversation_id)

    def conversation_ids(self) -> List[int]:
        return sorted(self._models)

    # Internal helpers

    def _write(self, rec: Dict) -> None:
        if self._path is None:
            return
        with self._path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False) + "\n")

    def _load_from_file(self) -> None:
        # undecodable bytes become U+FFFD so one bad line cannot stop the load
        with self._path.open("r", encoding="utf-8", errors="replace") as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    LOGGER.warning("Skipping unreadable history line %d in %s", lineno, self._path)
                    continue
                if not isinstance(obj, dict):
                    LOGGER.warning("Skipping non-record history line %d in %s", lineno, self._path)
                    continue
                kind = obj.get("type")
                if kind == "conversation" and isinstance(obj.get("id"), int):
                    self._models[obj["id"]] = str(obj.get("model", ""))
                    self._messages.setdefault(obj["id"], [])
                elif kind == "message" and obj.get("role") in ROLES:
                    conv_id = obj.get("conversation_id")
                    if conv_id not in self._models:
                        continue
                    self._messages[conv_id].append(Message(
                        role=obj["role"],
                        content=obj.get("content", ""),
                        prompt_tokens=obj.get("prompt_tokens"),
                        completion_tokens=obj.get("completion_tokens"),
                    ))
