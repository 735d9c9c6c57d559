"""Local large language model backend for story text.

:class:`TextGenerator` wraps a Hugging Face Transformers causal language
model behind the same ``generate_response`` interface as the hosted client in
:mod:`api_handler`, so the story services never need to know which backend is
active. Flask initialises a single instance when ``TEXT_GENERATOR_MODEL_PATH``
is configured and reuses it for every request.

Instruction-tuned checkpoints ship a chat template; when one is present the
prompt is wrapped as a single user turn so the model answers instead of
continuing the prompt text.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer


LOGGER = logging.getLogger(__name__)


class TextGenerator:
    def __init__(
        self,
        model_path: str,
        *,
        temperature: Optional[float] = 0.7,
        top_p: Optional[float] = 0.95,
        max_new_tokens: int = 1024,
        seed: int = 42,
        device_map: str | Dict[str, Any] | None = "auto",
        trust_remote_code: bool = False,
    ):
        self.temperature = temperature
        self.top_p = top_p
        self.max_new_tokens = max_new_tokens
        # generate() is not re-entrant on a shared model; requests take turns.
        self._lock = threading.Lock()

        torch.manual_seed(seed)
        if torch.cuda.is_available():
            torch.cuda.manual_seed_all(seed)

        LOGGER.info("Loading local model from %s", model_path)
        self.model = AutoModelForCausalLM.from_pretrained(
            model_path,
            device_map=device_map,
            torch_dtype="auto",
            trust_remote_code=trust_remote_code,
        )
        self.model.eval()

        self.tokenizer = AutoTokenizer.from_pretrained(model_path, trust_remote_code=trust_remote_code)
        if self.tokenizer.pad_token is None:
            # Many causal models do not ship with a dedicated pad token.
            self.tokenizer.pad_token = self.tokenizer.eos_token

    def _encode(self, prompt: str):
        if getattr(self.tokenizer, "chat_template", None):
            input_ids = self.tokenizer.apply_chat_template(
                [{"role": "user", "content": prompt}],
                add_generation_prompt=True,
                return_tensors="pt",
            )
            return {"input_ids": input_ids.to(self.model.device)}
        return self.tokenizer(prompt, return_tensors="pt").to(self.model.device)

    def _sampling_options(
        self,
        max_new_tokens: Optional[int],
        temperature: Optional[float],
        top_p: Optional[float],
    ) -> Dict[str, Any]:
        budget = int(max_new_tokens) if max_new_tokens is not None else self.max_new_tokens
        if budget <= 0:
            raise ValueError("max_new_tokens must be a positive integer")

        options: Dict[str, Any] = {
            "max_new_tokens": budget,
            "do_sample": True,
            "pad_token_id": self.tokenizer.pad_token_id,
        }
        for name, override, default in (
            ("temperature", temperature, self.temperature),
            ("top_p", top_p, self.top_p),
        ):
            value = default if override is None else override
            if value is not None:
                options[name] = value
        return options

    def generate_response(
        self,
        prompt: str,
        *,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> str:
        """Generate a reply to ``prompt``; the prompt tokens are not echoed back."""
        options = self._sampling_options(max_new_tokens, temperature, top_p)
        inputs = self._encode(prompt)

        with self._lock, torch.no_grad():
            sequences = self.model.generate(**inputs, **options)

        reply_ids = sequences[0, inputs["input_ids"].shape[-1]:]
        if reply_ids.numel() == 0:
            return ""
        return self.tokenizer.decode(reply_ids, skip_special_tokens=True).strip()
