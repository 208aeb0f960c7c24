from functools import lru_cache
from typing import Any, List

from openai import AsyncOpenAI

from relay.models import ChatTurn, GenerationOptions, UpstreamContent, UpstreamPart

SYSTEM_INSTRUCTION = (
    "あなたは丁寧でわかりやすい日本語アシスタントSHIMAです。"
    "短い段落と箇条書きを使い、詰まりすぎないよう適度に改行してください。"
)

_UPSTREAM_ROLES = {"user": "user", "assistant": "model"}


class UpstreamError(RuntimeError):
    """The generation API failed; the message is the upstream's own text."""


def to_upstream_contents(turns: List[ChatTurn]) -> List[UpstreamContent]:
    """Translate relayed turns into the generation API's conversation shape (`assistant` becomes `model`).

    This list is the canonical upstream form; `to_chat_messages` only lays it
    out for the OpenAI-compatible transport, which names the model role `assistant`.
    """
    return [
        UpstreamContent(role=_UPSTREAM_ROLES[t.role], parts=[UpstreamPart(text=t.content)])
        for t in turns
    ]


def to_chat_messages(system_instruction: str, contents: List[UpstreamContent]) -> List[dict]:
    """Lay the turns out for the OpenAI-compatible chat endpoint; the persona goes first, outside the turn list."""
    messages = [{"role": "system", "content": system_instruction}] if system_instruction else []
    for c in contents:
        messages.append({"role": "assistant" if c.role == "model" else "user", "content": c.text})
    return messages


def _chunk_text(chunk: Any) -> str:
    choice = chunk.choices[0] if chunk.choices else None
    if choice is None or choice.delta is None:
        return ""
    return choice.delta.content or ""


class FragmentStream:
    """Async iterator over the non-empty text fragments of one streaming completion."""

    def __init__(self, upstream):
        self._upstream = upstream
        self._chunks = upstream.__aiter__()

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        while True:
            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                raise
            except Exception as e:
                raise UpstreamError(str(e) or type(e).__name__) from e
            text = _chunk_text(chunk)
            if text:
                return text

    async def aclose(self) -> None:
        await self._upstream.close()


class GenerationClient:
    def __init__(self, api_key: str, base_url: str):
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def stream(
        self,
        contents: List[UpstreamContent],
        options: GenerationOptions,
        system_instruction: str = SYSTEM_INSTRUCTION,
    ) -> FragmentStream:
        try:
            upstream = await self._client.chat.completions.create(
                model=options.model,
                messages=to_chat_messages(system_instruction, contents),
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                stream=True,
            )
        except Exception as e:
            raise UpstreamError(str(e) or type(e).__name__) from e
        return FragmentStream(upstream)


@lru_cache
def client_for(api_key: str, base_url: str) -> GenerationClient:
    return GenerationClient(api_key=api_key, base_url=base_url)
