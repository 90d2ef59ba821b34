from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal


Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class ChatTurn:
    role: Role
    content: str

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


def role_for(message: Dict[str, Any], viewer_id: str) -> Role:
    """Attribute a stored message to a chat role by authorship.

    Messages written by ``viewer_id`` are "user" turns, everything else is
    an "assistant" turn. There is no stored role field.
    """
    return "user" if str(message.get("sender_id")) == str(viewer_id) else "assistant"


def build_history(newest_first: Iterable[Dict[str, Any]], viewer_id: str) -> List[ChatTurn]:
    """Turn a newest-first page of messages into chronological chat turns."""
    return [
        ChatTurn(role=role_for(message, viewer_id), content=message.get("text") or "")
        for message in reversed(list(newest_first))
    ]
