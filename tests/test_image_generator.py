"""
Tests for the Gemini image generator client
"""

import json

import httpx
import pytest

from app.core.errors import GenerationFailure
from app.services.image_generator import GeminiImageGenerator, split_data_url

IMAGE = "data:image/png;base64,aW1hZ2U="


def make_generator(handler, api_key="test-key"):
    return GeminiImageGenerator(
        api_key=api_key,
        model="gemini-2.0-flash-exp",
        base_url="https://gemini.test/v1beta",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def gemini_response(parts, usage=None):
    body = {"candidates": [{"content": {"parts": parts}}]}
    if usage is not None:
        body["usageMetadata"] = usage
    return httpx.Response(200, json=body)


class TestSplitDataUrl:
    def test_data_url(self):
        assert split_data_url("data:image/webp;base64,QUJD") == ("QUJD", "image/webp")

    def test_bare_base64_defaults_to_jpeg(self):
        assert split_data_url("QUJD") == ("QUJD", "image/jpeg")


class TestGeminiImageGenerator:
    async def test_request_shape(self):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["key"] = request.headers.get("x-goog-api-key")
            captured["body"] = json.loads(request.content)
            return gemini_response([{"text": "A portrait"}])

        await make_generator(handler).generate(IMAGE, "renaissance")

        assert captured["url"] == "https://gemini.test/v1beta/models/gemini-2.0-flash-exp:generateContent"
        assert captured["key"] == "test-key"
        parts = captured["body"]["contents"][0]["parts"]
        assert parts[0]["inline_data"] == {"mime_type": "image/png", "data": "aW1hZ2U="}
        assert "Renaissance" in parts[1]["text"]
        assert captured["body"]["generationConfig"]["responseModalities"] == ["TEXT", "IMAGE"]

    async def test_image_and_text_response(self):
        def handler(request):
            return gemini_response(
                [{"text": "Bold swirls"}, {"inlineData": {"mimeType": "image/png", "data": "c3R5bGVk"}}],
                usage={"promptTokenCount": 1200, "candidatesTokenCount": 300},
            )

        result = await make_generator(handler).generate(IMAGE, "van_gogh")

        assert result.generated is True
        assert result.image == "data:image/png;base64,c3R5bGVk"
        assert result.description == "Bold swirls"
        assert result.input_tokens == 1200
        assert result.output_tokens == 300

    async def test_text_only_response_echoes_original(self):
        def handler(request):
            return gemini_response([{"text": "x" * 10}])

        result = await make_generator(handler).generate(IMAGE, "monet")

        assert result.generated is False
        assert result.image == IMAGE
        assert result.output_tokens == 3

    async def test_image_only_response_gets_default_description(self):
        def handler(request):
            return gemini_response([{"inline_data": {"mime_type": "image/jpeg", "data": "anBn"}}])

        result = await make_generator(handler).generate(IMAGE, "van_gogh")

        assert result.image == "data:image/jpeg;base64,anBn"
        assert "van gogh" in result.description

    @pytest.mark.parametrize("response", [
        httpx.Response(500, text="internal"),
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json={"candidates": []}),
        httpx.Response(200, json={"candidates": [{"content": {"parts": []}}]}),
    ])
    async def test_unusable_responses_raise(self, response):
        with pytest.raises(GenerationFailure):
            await make_generator(lambda request: response).generate(IMAGE, "renaissance")

    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GenerationFailure):
            await make_generator(handler).generate(IMAGE, "renaissance")

    async def test_missing_api_key_raises_before_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return gemini_response([{"text": "never"}])

        with pytest.raises(GenerationFailure):
            await make_generator(handler, api_key="").generate(IMAGE, "renaissance")
        assert calls == []

    async def test_unknown_style_raises(self):
        with pytest.raises(GenerationFailure):
            await make_generator(lambda request: gemini_response([])).generate(IMAGE, "cubism")
