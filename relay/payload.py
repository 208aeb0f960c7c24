"""
Request body parsing for ``POST /chat``.

The body is read leniently: anything that is not a usable turn is dropped,
and options fall back to the configured defaults instead of failing the
request. Only an empty history is a client error.
"""
import logging
import math
from numbers import Real
from typing import Any, List, Mapping

from relay.models import ChatTurn, GenerationOptions
from relay.settings import RelaySettings

logger = logging.getLogger(__name__)

RELAYED_ROLES = ("user", "assistant")


class InvalidChatRequest(ValueError):
    pass


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def parse_history(raw: Any) -> List[ChatTurn]:
    """
    Keep user/assistant turns with non-empty string content, in order.
    """
    if not isinstance(raw, list):
        raise InvalidChatRequest("Invalid body. messages[] required.")

    turns = [
        ChatTurn(role=m["role"], content=m["content"])
        for m in raw
        if isinstance(m, Mapping)
        and m.get("role") in RELAYED_ROLES
        and isinstance(m.get("content"), str)
        and m["content"]
    ]
    if not turns:
        raise InvalidChatRequest("Invalid body. messages[] required.")
    return turns


def resolve_options(body: Mapping[str, Any], settings: RelaySettings) -> GenerationOptions:
    model = settings.default_model
    requested = body.get("model")
    if isinstance(requested, str) and requested.strip():
        if requested.strip() in settings.known_models:
            model = requested.strip()
        else:
            logger.warning("Unknown model %r requested; using %s", requested, settings.default_model)

    temperature = body.get("temperature")
    max_tokens = body.get("maxTokens")

    return GenerationOptions(
        model=model,
        temperature=float(temperature) if _is_number(temperature) else settings.temperature,
        max_tokens=int(max_tokens) if _is_number(max_tokens) else settings.max_tokens,
    )
