"""Shared plumbing for every service that talks to a generation backend.

Prompt templates and their generation parameters are read from the JSON
prompt configuration. Generator instances are created lazily and cached on
the application config so every request reuses the same client. Raw model
output is decoded through :func:`decode_json_payload`, which never raises.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from flask import current_app

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"
TEXT_GENERATOR_KEY = "_TEXT_GENERATOR_INSTANCE"
IMAGE_GENERATOR_KEY = "_IMAGE_GENERATOR_INSTANCE"


class GenerationConfigError(RuntimeError):
    """Raised when the prompt configuration is missing or malformed."""


class GenerationFailedError(RuntimeError):
    """Raised when a generation backend fails on a direct request."""


@dataclass
class DecodeResult:
    """Outcome of decoding model output: a payload or a reason code."""

    payload: Any = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.reason is None


def decode_json_payload(raw_response: Optional[str], *, expect: type = dict) -> DecodeResult:
    """Locate and decode the JSON object (or array) embedded in ``raw_response``.

    Decoding starts at each ``{`` or ``[`` in turn and the first complete JSON
    value wins; text around it is ignored. That value must be an instance of
    ``expect``. Reason codes: ``empty_response``, ``no_json``,
    ``invalid_json`` and ``wrong_shape``.
    """

    if not raw_response or not raw_response.strip():
        return DecodeResult(reason="empty_response")

    starts = [index for index, char in enumerate(raw_response) if char in "{["]
    if not starts:
        return DecodeResult(reason="no_json")

    decoder = json.JSONDecoder()
    for start in starts:
        try:
            data, _end = decoder.raw_decode(raw_response, start)
        except json.JSONDecodeError:
            continue
        break
    else:
        return DecodeResult(reason="invalid_json")

    if not isinstance(data, expect):
        return DecodeResult(reason="wrong_shape")
    return DecodeResult(payload=data)


def load_prompt_entry(key: str) -> Dict[str, Any]:
    config = _load_prompt_config()
    try:
        entry = config[key]
    except KeyError as exc:  # pragma: no cover - configuration issues are caught at runtime
        raise GenerationConfigError(f"Prompt configuration is missing the '{key}' entry.") from exc
    if not isinstance(entry, dict):
        raise GenerationConfigError(f"Prompt configuration entry '{key}' must be a dictionary.")
    if not entry.get("prompt_template"):
        raise GenerationConfigError(f"Prompt configuration entry '{key}' is missing the template text.")
    return entry


def _load_prompt_config() -> Dict[str, Any]:
    app = current_app
    cached = app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    config_path = app.config.get("PROMPT_CONFIG_PATH")
    if not config_path:
        raise GenerationConfigError("PROMPT_CONFIG_PATH is not configured.")

    path = Path(config_path)
    if not path.exists():
        raise GenerationConfigError(f"Prompt configuration file not found at: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:  # pragma: no cover - malformed file should be obvious at runtime
            raise GenerationConfigError(f"Unable to parse prompt configuration: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise GenerationConfigError("Prompt configuration must be a JSON object.")

    app.config[PROMPT_CACHE_KEY] = data
    return data


_GENERATION_PARAMETER_KEYS = {
    "max_new_tokens",
    "temperature",
    "top_p",
}


def extract_generation_parameters(parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filter a raw parameters dictionary to generation kwargs supported by the LLM."""

    if not isinstance(parameters, dict):
        return {}

    kwargs: Dict[str, Any] = {}
    for key in _GENERATION_PARAMETER_KEYS:
        if key in parameters and parameters[key] is not None:
            kwargs[key] = parameters[key]
    return kwargs


def apply_template(template: str, **values: Any) -> str:
    # Templates embed literal JSON braces, so str.format is not an option.
    result = template
    for key, raw in values.items():
        replacement = raw if isinstance(raw, str) else str(raw)
        result = result.replace(f"{{{key}}}", replacement)
    return result


def render_prompt(key: str, **values: Any) -> tuple[str, Dict[str, Any]]:
    """Return the filled-in prompt for ``key`` and its generation kwargs."""

    entry = load_prompt_entry(key)
    prompt = apply_template(entry["prompt_template"], **values).strip()
    return prompt, extract_generation_parameters(entry.get("parameters"))


def get_text_generator(api_key: Optional[str] = None) -> Optional[Any]:  # pragma: no cover - integration point
    app = current_app
    if api_key:
        return _build_api_generator(api_key)
    if TEXT_GENERATOR_KEY in app.config:
        return app.config[TEXT_GENERATOR_KEY]

    generator = None
    model_path = app.config.get("TEXT_GENERATOR_MODEL_PATH")
    if model_path:
        try:
            from text_generator import TextGenerator

            app.logger.info("Initialising local text generator with model path: %s", model_path)
            generator = TextGenerator(model_path=model_path)
        except Exception as exc:
            app.logger.warning("Failed to initialise text generator at '%s': %s", model_path, exc)
    elif app.config.get("ARK_API_KEY"):
        generator = _build_api_generator(app.config["ARK_API_KEY"])
    else:
        app.logger.info("No text backend configured; story text will use fallback content.")

    app.config[TEXT_GENERATOR_KEY] = generator
    return generator


def get_image_generator(api_key: Optional[str] = None) -> Optional[Any]:  # pragma: no cover - integration point
    app = current_app
    if api_key:
        return _build_api_generator(api_key)
    if IMAGE_GENERATOR_KEY in app.config:
        return app.config[IMAGE_GENERATOR_KEY]

    generator = None
    if app.config.get("ARK_API_KEY"):
        generator = _build_api_generator(app.config["ARK_API_KEY"])
    else:
        app.logger.info("ARK_API_KEY not configured; illustrations are disabled.")

    app.config[IMAGE_GENERATOR_KEY] = generator
    return generator


def _build_api_generator(api_key: str) -> Optional[Any]:  # pragma: no cover - integration point
    app = current_app
    try:
        from api_handler import OpenAICompatibleGenerator

        return OpenAICompatibleGenerator(
            api_key=api_key,
            base_url=app.config.get("ARK_BASE_URL"),
            text_model=app.config.get("STORY_TEXT_MODEL", ""),
            image_model=app.config.get("STORY_IMAGE_MODEL", ""),
        )
    except Exception as exc:
        app.logger.warning("Failed to initialise the hosted generation client: %s", exc)
        return None
