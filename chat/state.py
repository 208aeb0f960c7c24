"""
Client-side application state.

``AppState`` replaces the ambient globals of a browser page (current user,
session list, selected session, visible messages). Every in-flight send is
tracked by an explicit tagged state instead of loading flags.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional, Union

DEFAULT_TITLE = "新しいチャット"
ERROR_MARKER = "Gemini error"

Role = Literal["user", "assistant"]


class ModelChoice(str, Enum):
    PRO = "pro"
    FLASH = "flash"

    @property
    def model_id(self) -> str:
        return _MODEL_IDS[self]

    @property
    def label(self) -> str:
        return _MODEL_LABELS[self]


_MODEL_IDS = {
    ModelChoice.PRO: "gemini-1.5-pro",
    ModelChoice.FLASH: "gemini-1.5-flash",
}

_MODEL_LABELS = {
    ModelChoice.PRO: "SHIMA 1.5 Pro",
    ModelChoice.FLASH: "SHIMA 1.5 Flash",
}


@dataclass(frozen=True)
class SessionRow:
    id: str
    user_id: str
    title: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def display_title(self) -> str:
        return self.title or DEFAULT_TITLE


@dataclass(frozen=True)
class MessageRow:
    id: str
    session_id: str
    role: Role
    content: str
    created_at: Optional[datetime] = None
    # placeholder still waiting for the stream to settle
    pending: bool = False
    # placeholder settled to the error marker; never persisted
    failed: bool = False

    def as_turn(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


# =========================
# PER-SEND STATES
# =========================

@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Sending:
    session_id: str
    user_message_id: str


@dataclass(frozen=True)
class Streaming:
    session_id: str
    temp_id: str
    buffer: str = ""


@dataclass(frozen=True)
class Settled:
    session_id: str
    temp_id: str
    outcome: Literal["success", "error"]
    buffer: str = ""


SendState = Union[Idle, Sending, Streaming, Settled]

IDLE = Idle()


@dataclass
class AppState:
    user_id: Optional[str] = None
    user_email: str = ""
    model: ModelChoice = ModelChoice.PRO
    sessions: List[SessionRow] = field(default_factory=list)
    selected_session_id: Optional[str] = None
    transcripts: Dict[str, List[MessageRow]] = field(default_factory=dict)
    sends: Dict[str, SendState] = field(default_factory=dict)

    @property
    def messages(self) -> List[MessageRow]:
        """Messages of the selected session, in display order."""
        if not self.selected_session_id:
            return []
        return self.transcripts.get(self.selected_session_id, [])

    def send_state(self, session_id: str) -> SendState:
        return self.sends.get(session_id, IDLE)

    def is_in_flight(self, session_id: str) -> bool:
        return isinstance(self.send_state(session_id), (Sending, Streaming))

    @property
    def can_send(self) -> bool:
        return bool(self.selected_session_id) and not self.is_in_flight(self.selected_session_id)

    def visible_history(self, session_id: str) -> List[Dict[str, str]]:
        """Turns the relay should see: everything on screen except unsettled or failed placeholders."""
        return [
            m.as_turn()
            for m in self.transcripts.get(session_id, [])
            if not m.pending and not m.failed
        ]
