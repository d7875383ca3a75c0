"""
AI oracle backed by the google-generativeai SDK.

`LlmChat` / `UserMessage` / `ImageContent` build single-turn requests;
`GeminiOracle` exposes the two calls the pipeline needs:
text completion and single-image (vision) completion.
"""

import asyncio
from typing import Any, Dict, List, Optional, Protocol

import google.generativeai as genai

from app.config import logger, get_llm_api_key, GEMINI_MODEL, AI_CALL_TIMEOUT_SECONDS
from app.services.errors import OracleError


class AIOracle(Protocol):
    """Black-box completion service used by extraction and grading."""

    async def complete(self, system_prompt: str, user_content: str) -> str:
        ...

    async def complete_vision(self, system_prompt: str, image_bytes: bytes) -> str:
        ...


def _sniff_mime_type(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if data.startswith(b"GIF8"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


class ImageContent:
    """One page image attached to a prompt."""

    def __init__(self, image: bytes, mime_type: Optional[str] = None):
        self.image = image
        self.mime_type = mime_type or _sniff_mime_type(image)

    def to_genai_part(self) -> dict:
        return {"inline_data": {"mime_type": self.mime_type, "data": self.image}}


class UserMessage:
    def __init__(self, text: str = "", file_contents: Optional[List[ImageContent]] = None):
        self.text = text
        self.file_contents = file_contents or []

    def to_genai_parts(self) -> list:
        # Images first so the instruction text reads as a caption
        parts = [img.to_genai_part() for img in self.file_contents]
        if self.text:
            parts.append(self.text)
        return parts


class LlmChat:
    """
    Single-turn request builder over google-generativeai.

        LlmChat(system_message=prompt).with_model(GEMINI_MODEL).with_params(temperature=0)

    Extraction and grading never need history, so every send_message() is an
    independent generate_content call.
    """

    def __init__(self, system_message: str = ""):
        self.system_message = system_message
        self.model_name = GEMINI_MODEL
        self.generation_config: Dict[str, Any] = {}

    def with_model(self, model_name: str) -> "LlmChat":
        self.model_name = model_name
        return self

    def with_params(self, temperature: Optional[float] = None, max_output_tokens: Optional[int] = None) -> "LlmChat":
        if temperature is not None:
            self.generation_config["temperature"] = temperature
        if max_output_tokens is not None:
            self.generation_config["max_output_tokens"] = max_output_tokens
        return self

    def _model(self) -> genai.GenerativeModel:
        return genai.GenerativeModel(
            model_name=self.model_name,
            system_instruction=self.system_message or None,
            generation_config=self.generation_config or None,
        )

    async def send_message(self, message: UserMessage) -> str:
        response = await self._model().generate_content_async(message.to_genai_parts())
        return response.text


class GeminiOracle:
    """AIOracle implementation: one Gemini request per call, bounded by a timeout."""

    def __init__(
        self,
        model_name: str = GEMINI_MODEL,
        timeout_seconds: float = AI_CALL_TIMEOUT_SECONDS,
        temperature: float = 0,
        max_output_tokens: int = 8000,
    ):
        self.model_name = model_name
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    def _chat(self, system_prompt: str) -> LlmChat:
        return (
            LlmChat(system_message=system_prompt)
            .with_model(self.model_name)
            .with_params(temperature=self.temperature, max_output_tokens=self.max_output_tokens)
        )

    async def _send(self, system_prompt: str, message: UserMessage, operation_name: str) -> str:
        if not get_llm_api_key():
            raise OracleError("AI API key not configured. Set GEMINI_API_KEY.")

        try:
            text = await asyncio.wait_for(
                self._chat(system_prompt).send_message(message),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"⏱️ TIMEOUT after {self.timeout_seconds}s: {operation_name}")
            raise OracleError(f"{operation_name} exceeded {self.timeout_seconds}s timeout")
        except Exception as e:
            logger.error(f"{operation_name} failed: {e}")
            raise OracleError(f"{operation_name} failed: {e}") from e

        if not text or not text.strip():
            raise OracleError("AI returned empty response")
        return text

    async def complete(self, system_prompt: str, user_content: str) -> str:
        return await self._send(system_prompt, UserMessage(text=user_content), "Text completion")

    async def complete_vision(self, system_prompt: str, image_bytes: bytes) -> str:
        message = UserMessage(
            text="Here is a page of an exam paper. Extract every complete question on it.",
            file_contents=[ImageContent(image_bytes)],
        )
        return await self._send(system_prompt, message, "Vision completion")
