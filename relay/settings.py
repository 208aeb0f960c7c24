import os
from functools import lru_cache
from typing import Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables from .env file FIRST
load_dotenv()

DEFAULT_MODEL = "gemini-1.5-pro"
BUILTIN_MODELS = ("gemini-1.5-pro", "gemini-1.5-flash")
DEFAULT_TEMPERATURE = 0.8
DEFAULT_MAX_TOKENS = 1024
# OpenAI-compatible surface of the generation API
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


# Strip whitespace: a trailing space in an App Service setting breaks the key
def _getenv(key: str, default: str = None) -> str:
    val = os.getenv(key) or default
    return val.strip() if val else val


def _getnumber(key: str, default, cast):
    raw = _getenv(key)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {raw!r}") from e


class RelaySettings(BaseModel):
    api_key: Optional[str] = None
    default_model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    base_url: str = DEFAULT_BASE_URL
    extra_models: Tuple[str, ...] = ()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @property
    def known_models(self) -> Tuple[str, ...]:
        models = list(BUILTIN_MODELS)
        for model in (self.default_model, *self.extra_models):
            if model and model not in models:
                models.append(model)
        return tuple(models)


def load_settings() -> RelaySettings:
    extra = _getenv("GEMINI_MODELS", "")
    return RelaySettings(
        api_key=_getenv("GOOGLE_API_KEY"),
        default_model=_getenv("GEMINI_MODEL", DEFAULT_MODEL),
        temperature=_getnumber("GEMINI_TEMP", DEFAULT_TEMPERATURE, float),
        max_tokens=_getnumber("GEMINI_MAX_TOKENS", DEFAULT_MAX_TOKENS, lambda v: int(float(v))),
        base_url=_getenv("GEMINI_BASE_URL", DEFAULT_BASE_URL),
        extra_models=tuple(m.strip() for m in extra.split(",") if m.strip()),
    )


@lru_cache
def get_settings() -> RelaySettings:
    return load_settings()
