"""
Tests for the Gemini REST client.

All HTTP traffic goes through ``httpx.MockTransport``.
"""

import base64
import json
import logging

import httpx
import pytest

from dept_records.config_schema import RootConfig
from dept_records.exceptions import (
    APIKeyError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
)
from dept_records.gemini_client import (
    GEMINI_API_URL,
    GEMINI_MODEL,
    GeminiResponse,
    GeminiVisionClient,
)

API_KEY = "AIza" + "x" * 35


def _answer(text="hello", finish_reason="STOP", usage=None):
    body = {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish_reason}]}
    if usage is not None:
        body["usageMetadata"] = usage
    return body


def _client(handler, **kwargs):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return GeminiVisionClient(api_key=API_KEY, http_client=http, **kwargs)


class TestRequest:

    def test_payload_and_key_param(self):
        seen = {}

        def handler(request):
            seen["url"] = request.url
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_answer())

        client = _client(handler)
        client.generate("Extract", file_bytes=b"\x89PNG", mime_type="image/png", max_output_tokens=1234)

        assert seen["url"].path == f"/v1beta/models/{GEMINI_MODEL}:generateContent"
        assert seen["url"].params["key"] == API_KEY

        parts = seen["body"]["contents"][0]["parts"]
        assert parts[0] == {"text": "Extract"}
        assert parts[1]["inline_data"]["mime_type"] == "image/png"
        assert base64.b64decode(parts[1]["inline_data"]["data"]) == b"\x89PNG"
        assert seen["body"]["generationConfig"] == {"temperature": 0.1, "maxOutputTokens": 1234}

    def test_text_only_payload(self):
        client = _client(lambda request: httpx.Response(200, json=_answer()))
        payload = client.build_payload("Hello")
        assert payload["contents"][0]["parts"] == [{"text": "Hello"}]
        assert payload["generationConfig"]["maxOutputTokens"] == 8192

    def test_file_without_mime_type_rejected(self):
        client = _client(lambda request: httpx.Response(200, json=_answer()))
        with pytest.raises(ProviderError, match="mime_type"):
            client.build_payload("Extract", file_bytes=b"data")

    def test_endpoint_strips_trailing_slash(self):
        client = _client(lambda request: httpx.Response(200, json=_answer()), base_url="http://local/v1/")
        assert client.endpoint == f"http://local/v1/models/{GEMINI_MODEL}:generateContent"


class TestResponse:

    def test_text_finish_reason_and_usage(self):
        client = _client(lambda request: httpx.Response(200, json=_answer("{}", usage={"totalTokenCount": 9})))
        response = client.generate("Extract")
        assert response == GeminiResponse(text="{}", finish_reason="STOP", usage={"totalTokenCount": 9})
        assert not response.truncated

    def test_truncated_answer_flagged(self, caplog):
        client = _client(lambda request: httpx.Response(200, json=_answer('{"a": "tr', "MAX_TOKENS")))
        with caplog.at_level(logging.WARNING, logger="dept_records.gemini_client"):
            response = client.generate("Extract")
        assert response.truncated
        assert "truncated" in caplog.text

    @pytest.mark.parametrize("body", [
        {},
        {"candidates": []},
        {"candidates": [{"content": {"parts": []}}]},
        {"candidates": [{"content": {"parts": [{"inlineData": {}}]}}]},
    ])
    def test_missing_text_is_empty(self, body):
        client = _client(lambda request: httpx.Response(200, json=body))
        response = client.generate("Extract")
        assert response.text == ""
        assert response.finish_reason is None

    @pytest.mark.parametrize("body", [
        {"candidates": [{"content": ["oops"]}]},
        {"candidates": [{"content": {"parts": "text"}}]},
        {"candidates": [{"content": {"parts": ["text"]}}]},
        {"candidates": ["oops"]},
        {"candidates": {"content": {}}},
    ])
    def test_malformed_candidate_raises_provider_error(self, body):
        client = _client(lambda request: httpx.Response(200, json=body))
        with pytest.raises(ProviderError, match="unexpected envelope"):
            client.generate("Extract")

    def test_error_envelope(self):
        body = {"error": {"code": 400, "message": "Request payload size exceeds the limit"}}
        client = _client(lambda request: httpx.Response(200, json=body))
        with pytest.raises(ProviderError, match="payload size") as exc_info:
            client.generate("Extract")
        assert exc_info.value.details["error"]["code"] == 400

    def test_non_json_body(self):
        client = _client(lambda request: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(ProviderError, match="non-JSON"):
            client.generate("Extract")


class TestErrorMapping:

    def test_rate_limit(self):
        client = _client(lambda request: httpx.Response(429, json={"error": {"message": "quota"}}))
        with pytest.raises(RateLimitError) as exc_info:
            client.generate("Extract")
        assert exc_info.value.details["status"] == 429

    @pytest.mark.parametrize("status", [401, 403])
    def test_rejected_key(self, status):
        client = _client(lambda request: httpx.Response(status, text="forbidden"))
        with pytest.raises(APIKeyError):
            client.generate("Extract")

    def test_server_error(self):
        client = _client(lambda request: httpx.Response(500, text="internal"))
        with pytest.raises(ProviderError) as exc_info:
            client.generate("Extract")
        assert exc_info.value.details == {"status": 500, "body": "internal"}
        assert not isinstance(exc_info.value, (RateLimitError, APIKeyError))

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(ProviderTimeoutError, match="timed out"):
            _client(handler, timeout=5).generate("Extract")

    def test_transport_error_message_sanitized(self):
        def handler(request):
            raise httpx.ConnectError(f"cannot reach {request.url}", request=request)

        with pytest.raises(ProviderError) as exc_info:
            _client(handler).generate("Extract")
        assert API_KEY not in exc_info.value.message
        assert "key=***" in exc_info.value.message


class TestConstruction:

    @pytest.mark.parametrize("key", [None, ""])
    def test_missing_key(self, key):
        with pytest.raises(APIKeyError, match="GOOGLE_API_KEY"):
            GeminiVisionClient(api_key=key)

    def test_from_config(self):
        config = RootConfig.model_validate({
            "api_keys": {"google_api_key": API_KEY},
            "gemini": {"model": "gemini-test", "temperature": 0.5, "timeout_seconds": 30},
        })
        client = GeminiVisionClient.from_config(config)
        try:
            assert client.model == "gemini-test"
            assert client.temperature == 0.5
            assert client.timeout == 30
            assert client.base_url == GEMINI_API_URL
            assert client.max_output_tokens == config.gemini.image_max_output_tokens
        finally:
            client.close()

    def test_injected_http_client_not_closed(self):
        http = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=_answer())))
        with GeminiVisionClient(api_key=API_KEY, http_client=http) as client:
            client.generate("Extract")
        assert not http.is_closed
        http.close()

    def test_masked_key_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger="dept_records.gemini_client"):
            client = _client(lambda request: httpx.Response(200, json=_answer()))
        client.close()
        assert f"model: {GEMINI_MODEL}, key: AIza***" in caplog.text
        assert API_KEY not in caplog.text
