"""
Gemini client that restyles a pet photo as an oil painting.

Calls the generateContent REST endpoint through httpx. Every call is a single
attempt; errors, timeouts and unusable responses raise GenerationFailure and
are handled by the caller.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple
import re
import httpx
from app.core.config import settings
from app.core.errors import GenerationFailure
import logging

logger = logging.getLogger(__name__)

STYLE_PROMPTS = {
    "renaissance": (
        "Transform this pet photo into a classic Renaissance-style oil painting portrait. "
        "Use rich, deep colors with dramatic chiaroscuro lighting reminiscent of Rembrandt. "
        "Add visible brush strokes texture, golden-brown undertones, and a formal, dignified composition. "
        "The pet should appear noble and majestic with careful attention to fur texture and eyes. "
        "Background should be dark and sophisticated with subtle gradients."
    ),
    "van_gogh": (
        "Transform this pet photo into a vibrant Van Gogh-style oil painting. "
        "Use bold, swirling brushstrokes with thick impasto texture. Apply bright, contrasting colors "
        "with vibrant yellows, deep blues, and vivid oranges. Create dynamic swirling movement in the background. "
        "The pet's fur should have visible, energetic brushstrokes following the natural flow. "
        "Make it emotionally expressive with dramatic color contrasts and post-impressionist style."
    ),
    "monet": (
        "Transform this pet photo into a soft, impressionist Monet-style oil painting. "
        "Use gentle, dappled brushstrokes with soft focus on details. Apply pastel tones with "
        "hints of lavender, soft pink, and light blue. Create a dreamy, atmospheric quality with "
        "soft edges and luminous colors. The overall effect should be peaceful and ethereal, "
        "like viewing the pet through morning light in a garden with impressionist techniques."
    ),
}

STYLES = tuple(STYLE_PROMPTS)

_DATA_URL = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,")


def style_label(style: str) -> str:
    return style.replace("_", " ")


def default_description(style: str) -> str:
    return (
        f"Your pet has been transformed into a beautiful {style_label(style)} style oil painting. "
        "The portrait captures the essence and personality of your beloved pet while applying the "
        "distinctive artistic techniques of this classical style."
    )


def split_data_url(image_data: str) -> Tuple[str, str]:
    """Return (base64 payload, mime type); bare base64 is assumed to be JPEG."""
    match = _DATA_URL.match(image_data)
    if match:
        return image_data[match.end():], match.group(1)
    return image_data, "image/jpeg"


@dataclass
class GenerationResult:
    image: str
    description: str
    generated: bool  # False when the model described the style but returned no pixels
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


class ImageGenerator(Protocol):
    model: str

    async def generate(self, image_data: str, style: str) -> GenerationResult:
        ...


class GeminiImageGenerator:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.base_url = (base_url or settings.gemini_api_base).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.generation_timeout_seconds
        self.transport = transport
        self.logger = logging.getLogger(__name__)

    async def generate(self, image_data: str, style: str) -> GenerationResult:
        self.logger.info(f"generate: Entry - style: {style}, model: {self.model}")

        if not self.api_key:
            raise GenerationFailure("GEMINI_API_KEY is not configured")
        if style not in STYLE_PROMPTS:
            raise GenerationFailure(f"Unknown style: {style}")

        clean_base64, mime_type = split_data_url(image_data)
        payload = {
            "contents": [{
                "parts": [
                    {"inline_data": {"mime_type": mime_type, "data": clean_base64}},
                    {"text": STYLE_PROMPTS[style]},
                ]
            }],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    headers={"x-goog-api-key": self.api_key},
                    json=payload,
                )
        except httpx.HTTPError as e:
            self.logger.error(f"generate: Failure - transport error: {e}")
            raise GenerationFailure(f"Gemini request failed: {e}") from e

        if response.status_code != 200:
            self.logger.error(f"generate: Failure - status: {response.status_code}, body: {response.text[:500]}")
            raise GenerationFailure(f"Gemini returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise GenerationFailure("Gemini returned a non-JSON response") from e

        result = self._parse_response(body, image_data, style)
        self.logger.info(
            f"generate: Success - style: {style}, generated_image: {result.generated}, "
            f"tokens: {result.input_tokens}/{result.output_tokens}"
        )
        return result

    def _parse_response(self, body: dict, image_data: str, style: str) -> GenerationResult:
        candidates = body.get("candidates") or []
        if not candidates:
            raise GenerationFailure("No candidates in Gemini response")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        description = ""
        generated_image = ""
        for part in parts:
            if part.get("text"):
                description = part["text"]
                continue
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                generated_image = f"data:{mime_type};base64,{inline['data']}"

        usage = body.get("usageMetadata") or {}
        input_tokens = usage.get("promptTokenCount") or 0
        output_tokens = usage.get("candidatesTokenCount") or 0
        if not output_tokens and description:
            # ~4 characters per token
            output_tokens = -(-len(description) // 4)

        if not generated_image and not description:
            raise GenerationFailure("Gemini response contained neither image nor text")

        return GenerationResult(
            image=generated_image or image_data,
            description=description or default_description(style),
            generated=bool(generated_image),
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
