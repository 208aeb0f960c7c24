from pydantic import BaseModel
from typing import List, Literal


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class GenerationOptions(BaseModel):
    model: str
    temperature: float
    max_tokens: int


class ErrorResponse(BaseModel):
    error: str


# =========================
# UPSTREAM TURN SHAPE
# =========================

class UpstreamPart(BaseModel):
    text: str


class UpstreamContent(BaseModel):
    role: Literal["user", "model"]
    parts: List[UpstreamPart]

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts)
