# api_handler.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import openai

LOGGER = logging.getLogger(__name__)


class OpenAICompatibleGenerator:
    """
    Text and image generation against any OpenAI-compatible endpoint.

    The default deployment points ``base_url`` at Volcengine Ark, which serves
    both the chat model used for story text and the image model used for
    illustrations behind the OpenAI wire format.

    Compatible with OpenAI Python SDK >= 1.0.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        text_model: str = "",
        image_model: str = "",
        default_max_tokens: int = 4096,
    ) -> None:
        self.api_key = (api_key or "").strip()
        if not self.api_key:
            raise RuntimeError("An API key is required to use the hosted generation backend.")
        self.text_model = (text_model or "").strip()
        self.image_model = (image_model or "").strip()
        self.default_max_tokens = int(default_max_tokens or 4096)
        self._client = openai.OpenAI(api_key=self.api_key, base_url=base_url or None)

    # ---------------- public API ----------------
    def generate_response(
        self,
        prompt: str,
        *,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> str:
        """Send ``prompt`` as one user turn and return the reply text."""
        self._require_prompt(prompt)
        limit = self.default_max_tokens if max_new_tokens is None else int(max_new_tokens)
        if limit <= 0:
            raise ValueError("max_new_tokens must be positive.")

        request: Dict[str, Any] = {
            "model": self.text_model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": limit,
            # Ark's reasoning models accept a switch to skip hidden reasoning.
            "extra_body": {"thinking": {"type": "disabled"}},
        }
        request.update(
            (name, float(value))
            for name, value in (("temperature", temperature), ("top_p", top_p))
            if value is not None
        )

        completion = self._client.chat.completions.create(**request)
        reply = self._chat_text(completion).strip()
        if not reply:
            raise RuntimeError(
                "Chat completion returned no text. Raw response (truncated): "
                + self._shorten_debug(str(completion))
            )
        return reply

    def generate_images(
        self,
        prompt: str,
        *,
        size: Optional[str] = None,
        count: int = 1,
    ) -> List[str]:
        """Return image URLs for ``prompt``; an empty list is a valid answer."""
        self._require_prompt(prompt)

        request: Dict[str, Any] = {
            "model": self.image_model,
            "prompt": prompt,
            "n": max(1, int(count)),
            "response_format": "url",
            "extra_body": {"watermark": False},
        }
        if size:
            request["size"] = size

        images = self._client.images.generate(**request)
        urls = self._image_urls(images)
        if not urls:
            LOGGER.info("Image endpoint returned no images for model %s.", self.image_model)
        return urls

    # ---------------- extractors ----------------
    @staticmethod
    def _require_prompt(prompt: str) -> None:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")

    @staticmethod
    def _chat_text(completion: Any) -> str:
        choices = getattr(completion, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        content = getattr(message, "content", None)
        if isinstance(content, list):
            # Some gateways return content parts instead of a plain string.
            return "".join(
                str(part.get("text") or "")
                for part in content
                if isinstance(part, dict) and part.get("type") == "text"
            )
        return str(content or "")

    @staticmethod
    def _image_urls(images: Any) -> List[str]:
        urls: List[str] = []
        for item in getattr(images, "data", None) or []:
            if getattr(item, "url", None):
                urls.append(str(item.url))
            elif getattr(item, "b64_json", None):
                urls.append(f"data:image/png;base64,{item.b64_json}")
        return urls

    @staticmethod
    def _shorten_debug(text: str, limit: int = 1200) -> str:
        flat = text.replace("\n", " ")
        return flat if len(flat) <= limit else flat[:limit] + "…"
