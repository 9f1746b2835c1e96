"""
Client for the hosted Gemini models over the Generative Language REST API.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from fluxo.config import AssistantConfig
from fluxo.database.models import UserSettings
from fluxo.errors import BackendUnavailableError, QuotaExceededError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TOOL_REPLY = "Ação realizada."
DEFAULT_REPLY = "Não entendi, pode repetir?"

# (name, args) -> tool result text
ToolCallHandler = Callable[[str, dict[str, Any]], str]


@dataclass
class ChatTurn:
    """One plain-text message of a conversation."""

    role: str  # "user" or "model"
    text: str


@dataclass
class ImageResult:
    """Generated image as a data URL."""

    data_url: str
    mime_type: str
    used_fallback: bool = False


def _text_of(response: dict[str, Any]) -> str:
    return "".join(part.get("text", "") for part in _parts_of(response)).strip()


def _parts_of(response: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = response.get("candidates") or []
    if not candidates:
        return []
    content = candidates[0].get("content") or {}
    return content.get("parts") or []


def _is_quota_error(response: requests.Response) -> bool:
    return response.status_code == 429 or "RESOURCE_EXHAUSTED" in response.text


class GeminiClient:
    """Thin REST client: text chat with function calling, and image generation."""

    def __init__(self, config: AssistantConfig, api_key: Optional[str] = None):
        """
        Args:
            config: Assistant section of the app config
            api_key: Per-user key; overrides the configured key when set
        """
        self.config = config
        self.api_key = api_key or config.api_key

    @property
    def is_available(self) -> bool:
        return bool(self.api_key)

    def generate_content(
        self,
        model: str,
        contents: list[dict[str, Any]],
        system_instruction: Optional[str] = None,
        tools: Optional[list[dict[str, Any]]] = None,
        generation_config: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Call ``models/{model}:generateContent``.

        Raises:
            QuotaExceededError: On HTTP 429 or RESOURCE_EXHAUSTED
            BackendUnavailableError: On missing key, network failure or 5xx
            ValidationError: On any other rejected request
        """
        if not self.api_key:
            raise BackendUnavailableError("Gemini API key is not configured")

        body: dict[str, Any] = {"contents": contents}
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        if tools:
            body["tools"] = [{"functionDeclarations": tools}]
        if generation_config:
            body["generationConfig"] = generation_config

        url = f"{self.config.base_url}/models/{model}:generateContent"
        try:
            response = requests.post(
                url,
                params={"key": self.api_key},
                json=body,
                timeout=self.config.timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            raise BackendUnavailableError(f"Gemini request failed: {e}")

        if response.ok:
            return response.json()

        detail = f"HTTP {response.status_code}: {response.text[:200]}"
        if _is_quota_error(response):
            raise QuotaExceededError(detail)
        if response.status_code >= 500:
            raise BackendUnavailableError(detail)
        raise ValidationError(detail)

    def chat(
        self,
        history: list[ChatTurn],
        message: str,
        system_instruction: Optional[str] = None,
        tools: Optional[list[dict[str, Any]]] = None,
        on_tool_call: Optional[ToolCallHandler] = None,
        model: Optional[str] = None,
    ) -> str:
        """
        Send one user message and return the model's reply text.

        When the model asks for tools, every call is routed through
        ``on_tool_call`` and the results go back in a single follow-up
        request. There is never a second tool round.
        """
        model = model or self.config.chat_model
        contents = [
            {"role": turn.role, "parts": [{"text": turn.text}]} for turn in history
        ]
        contents.append({"role": "user", "parts": [{"text": message}]})

        response = self.generate_content(
            model, contents, system_instruction=system_instruction, tools=tools
        )
        parts = _parts_of(response)
        calls = [p["functionCall"] for p in parts if p.get("functionCall")]

        if not calls or on_tool_call is None:
            return _text_of(response) or DEFAULT_REPLY

        replies = []
        for call in calls:
            name = call.get("name", "")
            result = on_tool_call(name, call.get("args") or {})
            reply: dict[str, Any] = {"name": name, "response": {"result": result}}
            if call.get("id"):
                reply["id"] = call["id"]
            replies.append({"functionResponse": reply})

        contents.append({"role": "model", "parts": parts})
        contents.append({"role": "user", "parts": replies})

        # Tools are not offered again so the follow-up cannot loop.
        final = self.generate_content(
            model, contents, system_instruction=system_instruction
        )
        return _text_of(final) or DEFAULT_TOOL_REPLY

    def generate_image(
        self, prompt: str, aspect_ratio: str = "1:1", image_size: str = "1K"
    ) -> ImageResult:
        """
        Generate one image, falling back to the flash model on quota errors.

        Raises:
            ValidationError: If the prompt is empty or no image came back
        """
        if not prompt or not prompt.strip():
            raise ValidationError("prompt is required")
        contents = [{"role": "user", "parts": [{"text": prompt}]}]
        used_fallback = False

        try:
            response = self.generate_content(
                self.config.image_model,
                contents,
                generation_config={
                    "responseModalities": ["TEXT", "IMAGE"],
                    "imageConfig": {"aspectRatio": aspect_ratio, "imageSize": image_size},
                },
            )
        except QuotaExceededError:
            logger.warning(
                f"Quota exceeded on {self.config.image_model}, "
                f"falling back to {self.config.image_fallback_model}"
            )
            used_fallback = True
            # The fallback model does not accept imageSize.
            response = self.generate_content(
                self.config.image_fallback_model,
                contents,
                generation_config={
                    "responseModalities": ["TEXT", "IMAGE"],
                    "imageConfig": {"aspectRatio": aspect_ratio},
                },
            )

        for part in _parts_of(response):
            inline = part.get("inlineData")
            if inline and inline.get("data"):
                mime_type = inline.get("mimeType") or "image/png"
                return ImageResult(
                    data_url=f"data:{mime_type};base64,{inline['data']}",
                    mime_type=mime_type,
                    used_fallback=used_fallback,
                )
        raise ValidationError("The model did not return an image")


def client_for_user(config: AssistantConfig, settings: UserSettings) -> GeminiClient:
    """Client using the user's own key when set, else the configured one."""
    return GeminiClient(config, api_key=settings.google_api_key)
