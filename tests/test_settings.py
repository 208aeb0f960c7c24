import pytest

from relay.payload import InvalidChatRequest, parse_history, resolve_options
from relay.settings import DEFAULT_BASE_URL, RelaySettings, load_settings

ENV_KEYS = ["GOOGLE_API_KEY", "GEMINI_MODEL", "GEMINI_TEMP", "GEMINI_MAX_TOKENS", "GEMINI_BASE_URL", "GEMINI_MODELS"]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults_without_environment(clean_env):
    settings = load_settings()
    assert settings.api_key is None
    assert not settings.configured
    assert settings.default_model == "gemini-1.5-pro"
    assert settings.temperature == 0.8
    assert settings.max_tokens == 1024
    assert settings.base_url == DEFAULT_BASE_URL


def test_environment_values_are_stripped_and_parsed(clean_env):
    clean_env.setenv("GOOGLE_API_KEY", " key-123 ")
    clean_env.setenv("GEMINI_MODEL", "gemini-1.5-flash")
    clean_env.setenv("GEMINI_TEMP", "0.2")
    clean_env.setenv("GEMINI_MAX_TOKENS", "2048")
    clean_env.setenv("GEMINI_MODELS", "gemini-2.0-flash, ,gemini-exp")

    settings = load_settings()
    assert settings.api_key == "key-123"
    assert settings.configured
    assert settings.default_model == "gemini-1.5-flash"
    assert settings.temperature == 0.2
    assert settings.max_tokens == 2048
    assert settings.known_models == ("gemini-1.5-pro", "gemini-1.5-flash", "gemini-2.0-flash", "gemini-exp")


def test_malformed_number_is_a_configuration_error(clean_env):
    clean_env.setenv("GEMINI_TEMP", "warm")
    with pytest.raises(ValueError, match="GEMINI_TEMP"):
        load_settings()


def test_configured_default_model_is_always_known():
    settings = RelaySettings(api_key="k", default_model="gemini-custom")
    assert "gemini-custom" in settings.known_models


def test_parse_history_keeps_order_of_valid_turns():
    turns = parse_history([
        {"role": "assistant", "content": "first"},
        {"role": "system", "content": "dropped"},
        {"role": "user", "content": "second"},
    ])
    assert [(t.role, t.content) for t in turns] == [("assistant", "first"), ("user", "second")]


@pytest.mark.parametrize("raw", [None, [], {"role": "user"}, [{"role": "user", "content": None}]])
def test_parse_history_rejects_histories_without_turns(raw):
    with pytest.raises(InvalidChatRequest):
        parse_history(raw)


def test_resolve_options_truncates_token_count():
    settings = RelaySettings(api_key="k")
    options = resolve_options({"maxTokens": 300.9, "temperature": 1}, settings)
    assert options.max_tokens == 300
    assert options.temperature == 1.0
    assert options.model == "gemini-1.5-pro"


def test_resolve_options_ignores_blank_model():
    options = resolve_options({"model": "   "}, RelaySettings(api_key="k", default_model="gemini-1.5-flash"))
    assert options.model == "gemini-1.5-flash"
