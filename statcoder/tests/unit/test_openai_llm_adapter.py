"""
tests/unit/test_openai_llm_adapter.py
──────────────────────────────────────────────────────────────────────────────
Unit tests for OpenAICompatibleLLMAdapter and container provider routing.

All HTTP calls are intercepted with unittest.mock.patch so these tests run
fully offline; no OPENAI_API_KEY or DEEPSEEK_API_KEY required.
"""
from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import make_settings
from statcoder.adapters.openai_llm import OpenAICompatibleLLMAdapter
from statcoder.domain.exceptions import AuthenticationError, ConfigurationError, LLMError

_POST = "statcoder.adapters.openai_llm.requests.post"
_SLEEP = "statcoder.adapters.openai_llm.time.sleep"


# ── Helpers ────────────────────────────────────────────────────────────────

def _make_chat_response(content: str, status: int = 200) -> MagicMock:
    """Build a mock requests.Response for a chat completions call."""
    mock_resp = MagicMock()
    mock_resp.ok = status < 400
    mock_resp.status_code = status
    mock_resp.text = content
    mock_resp.json.return_value = {
        "choices": [{"message": {"role": "assistant", "content": content}}],
    }
    return mock_resp


_ANSWER = json.dumps({"code": "2512", "label": "Software developers", "confidence": "High"})


class TestConstruction:
    def test_raises_if_no_openai_key(self):
        with pytest.raises(AuthenticationError, match="OPENAI_API_KEY"):
            OpenAICompatibleLLMAdapter(make_settings(openai_api_key=""), provider="openai")

    def test_raises_if_no_deepseek_key(self):
        with pytest.raises(AuthenticationError, match="DEEPSEEK_API_KEY"):
            OpenAICompatibleLLMAdapter(make_settings(deepseek_api_key=""), provider="deepseek")

    def test_local_needs_no_key(self):
        adapter = OpenAICompatibleLLMAdapter(
            make_settings(openai_api_key="", local_llm_model="llama3"), provider="local"
        )
        assert adapter.model_name == "llama3"

    def test_unknown_provider(self, settings):
        with pytest.raises(ConfigurationError):
            OpenAICompatibleLLMAdapter(settings, provider="mystery")

    def test_model_names(self, settings):
        assert OpenAICompatibleLLMAdapter(settings).model_name == "gpt-4o"
        deepseek = OpenAICompatibleLLMAdapter(
            make_settings(deepseek_model="deepseek-chat"), provider="deepseek"
        )
        assert deepseek.model_name == "deepseek-chat"


class TestGenerateJson:
    def test_happy_path(self, settings):
        with patch(_POST, return_value=_make_chat_response(_ANSWER)):
            out = OpenAICompatibleLLMAdapter(settings).generate_json("sys", "user")
        assert json.loads(out)["code"] == "2512"

    def test_openai_payload_uses_json_mode(self, settings):
        with patch(_POST, return_value=_make_chat_response(_ANSWER)) as mock_post:
            OpenAICompatibleLLMAdapter(settings).generate_json("sys", "user")
        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.openai.com/v1/chat/completions"
        payload = kwargs["json"]
        assert payload["model"] == "gpt-4o"
        assert payload["messages"][0] == {"role": "system", "content": "sys"}
        assert payload["messages"][1] == {"role": "user", "content": "user"}
        assert payload["response_format"] == {"type": "json_object"}
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test-key"

    def test_deepseek_payload_has_no_json_mode(self, settings):
        with patch(_POST, return_value=_make_chat_response(_ANSWER)) as mock_post:
            OpenAICompatibleLLMAdapter(settings, provider="deepseek").generate_json("s", "u")
        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.deepseek.com/chat/completions"
        assert "response_format" not in kwargs["json"]

    def test_base_url_override(self):
        s = make_settings(llm_base_url="http://proxy.internal/v1/chat/completions")
        with patch(_POST, return_value=_make_chat_response(_ANSWER)) as mock_post:
            OpenAICompatibleLLMAdapter(s).generate_json("s", "u")
        assert mock_post.call_args[0][0] == "http://proxy.internal/v1/chat/completions"

    def test_returns_none_on_empty_choices(self, settings):
        mock_resp = _make_chat_response("")
        mock_resp.json.return_value = {"choices": []}
        with patch(_POST, return_value=mock_resp):
            assert OpenAICompatibleLLMAdapter(settings).generate_json("s", "u") is None

    def test_returns_none_on_blank_content(self, settings):
        with patch(_POST, return_value=_make_chat_response("   ")):
            assert OpenAICompatibleLLMAdapter(settings).generate_json("s", "u") is None


class TestErrors:
    def test_401_raises_authentication_error(self, settings):
        with patch(_POST, return_value=_make_chat_response("unauthorised", status=401)):
            with pytest.raises(AuthenticationError):
                OpenAICompatibleLLMAdapter(settings).generate_json("s", "u")

    def test_400_raises_llm_error_with_status(self, settings):
        with patch(_POST, return_value=_make_chat_response("bad request", status=400)) as mock_post:
            with pytest.raises(LLMError, match=r"API Error \(openai\): 400 - bad request"):
                OpenAICompatibleLLMAdapter(settings).generate_json("s", "u")
        assert mock_post.call_count == 1

    def test_retries_on_429_then_succeeds(self, settings):
        rate_limit = _make_chat_response("slow down", status=429)
        success = _make_chat_response(_ANSWER)
        with patch(_POST, side_effect=[rate_limit, success]) as mock_post:
            with patch(_SLEEP):  # skip delay
                out = OpenAICompatibleLLMAdapter(settings).generate_json("s", "u")
        assert out is not None
        assert mock_post.call_count == 2

    def test_raises_after_all_retries_exhausted(self, settings):
        always_fail = _make_chat_response("unavailable", status=503)
        with patch(_POST, return_value=always_fail) as mock_post:
            with patch(_SLEEP):
                with pytest.raises(LLMError, match="after 3 attempts"):
                    OpenAICompatibleLLMAdapter(settings).generate_json("s", "u")
        assert mock_post.call_count == 3

    def test_transport_error_retried_then_raised(self, settings):
        with patch(_POST, side_effect=requests.ConnectionError("refused")) as mock_post:
            with patch(_SLEEP):
                with pytest.raises(LLMError, match="refused"):
                    OpenAICompatibleLLMAdapter(settings).generate_json("s", "u")
        assert mock_post.call_count == 3


class TestContainerProviderRouting:
    def test_unknown_llm_provider_raises(self):
        from statcoder.services.container import _build_llms
        with pytest.raises(ConfigurationError):
            _build_llms(make_settings(llm_provider="nonexistent"))

    def test_unknown_reference_store_raises(self):
        from statcoder.services.container import _build_backend
        with pytest.raises(ConfigurationError):
            _build_backend(make_settings(reference_store="sqlite"))

    def test_openai_provider_shares_one_adapter(self):
        from statcoder.services.container import _build_llms
        coding, assist = _build_llms(make_settings(llm_provider="openai"))
        assert isinstance(coding, OpenAICompatibleLLMAdapter)
        assert coding is assist

    def test_gemini_provider_builds_two_adapters(self):
        from statcoder.adapters.gemini_llm import GeminiLLMAdapter
        from statcoder.services.container import _build_llms
        coding, assist = _build_llms(make_settings(llm_provider="gemini"))
        assert isinstance(coding, GeminiLLMAdapter)
        assert isinstance(assist, GeminiLLMAdapter)
        assert coding is not assist

    def test_memory_backend(self):
        from statcoder.adapters.memory_store import InMemoryReferenceStore
        from statcoder.services.container import _build_backend
        assert isinstance(_build_backend(make_settings()), InMemoryReferenceStore)
