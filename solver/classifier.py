"""
Classifier gateway - asks a multimodal chat model which labelled glyph matches
the challenge instruction and parses the label number from its reply.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from .config import SolverConfig, config
from .errors import ClassifierError, NoIndexFound, TransportFailure
from .prompt_loader import render_prompt
from .utils import log as default_log


INDEX_PATTERN = re.compile(r"[0-9]+")

ANSWER_DIRECTIVE_PROMPT = "classifier/answer_directive.txt"


def parse_selection_index(text: Optional[str]) -> int:
    """
    Take the first run of ASCII digits in a free-form reply as the selection index.

    "The answer is 3." -> 3. Replies naming several numbers ("option 10 or 2")
    resolve to the first one.
    """
    match = INDEX_PATTERN.search(text or "")
    if not match:
        raise NoIndexFound(text or "")
    return int(match.group())


def _error_text(error: Any) -> str:
    if isinstance(error, dict):
        message = error.get("message")
        return str(message) if message else json.dumps(error, ensure_ascii=False)
    message = getattr(error, "message", None)
    return str(message) if message else str(error)


def _status_error_text(exc: openai.APIStatusError) -> str:
    body = exc.body
    if isinstance(body, dict):
        return _error_text(body.get("error", body))
    return exc.message or str(exc)


class ClassifierGateway:
    """
    Stateless client for the external classifier.
    Each classify() call issues exactly one request; retrying is the
    orchestrator's decision.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str,
        timeout: float = 60.0,
        temperature: float = 0.1,
        max_tokens: int = 23768,
        image_detail: str = "auto",
        probe_timeout: float = 10.0,
        client: Optional[AsyncOpenAI] = None,
        log_callback: Optional[Callable[[str, str], None]] = None,
    ):
        self.api_url = api_url
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.image_detail = image_detail
        self.probe_timeout = probe_timeout
        self._log = log_callback or default_log
        # SDK-level retries are disabled: one invocation, one request
        self.client = client or AsyncOpenAI(
            base_url=api_url,
            api_key=api_key,
            timeout=timeout,
            max_retries=0,
        )

    @classmethod
    def from_config(cls, cfg: Optional[SolverConfig] = None, **kwargs) -> "ClassifierGateway":
        cfg = cfg or config
        cfg.validate()
        return cls(
            api_url=cfg.api_url,
            api_key=cfg.api_key,
            model=cfg.model,
            timeout=cfg.api_timeout,
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
            image_detail=cfg.image_detail,
            probe_timeout=cfg.probe_timeout,
            **kwargs,
        )

    def build_messages(self, instruction: str, image_b64: str) -> List[Dict[str, Any]]:
        """Single user turn: instruction + answer directive, then the annotated image."""
        text = render_prompt(ANSWER_DIRECTIVE_PROMPT, instruction=instruction.strip())
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": text},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:image/png;base64,{image_b64}",
                            "detail": self.image_detail,
                        },
                    },
                ],
            }
        ]

    async def _complete(self, messages: List[Dict[str, Any]], max_tokens: int, timeout: float) -> Any:
        try:
            return await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=max_tokens,
                timeout=timeout,
            )
        except openai.APITimeoutError as exc:
            raise TransportFailure(f"Classifier request timed out after {timeout:.0f}s") from exc
        except openai.APIConnectionError as exc:
            raise TransportFailure(f"Network request failed: {exc}") from exc
        except openai.APIStatusError as exc:
            raise ClassifierError(f"HTTP {exc.status_code}: {_status_error_text(exc)}") from exc

    async def classify(self, image_b64: str, instruction: str) -> int:
        """
        Ask the classifier which label matches the instruction.

        Args:
            image_b64: Base64 PNG of the annotated challenge image
            instruction: Challenge prompt shown to the user

        Returns:
            The 1-based selection index named in the reply
        """
        self._log(f"Sending classifier request ({self.model}): {instruction}", "debug")
        messages = self.build_messages(instruction, image_b64)
        response = await self._complete(messages, self.max_tokens, self.timeout)

        error = getattr(response, "error", None)
        if error:
            raise ClassifierError(_error_text(error))

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        if message is None:
            raise ClassifierError(f"Unexpected response shape: {response!r}"[:500])

        content = message.content
        if not content:
            self._log("Classifier returned no content; max_tokens may be too low", "error")
        else:
            self._log(f"Classifier reply: {content.strip()}", "debug")
        return parse_selection_index(content)

    async def probe(self) -> bool:
        """Connectivity check: a one-token text request with a short timeout."""
        messages = [{"role": "user", "content": "test"}]
        try:
            response = await self._complete(messages, 1, self.probe_timeout)
        except (TransportFailure, ClassifierError) as exc:
            self._log(f"API test failed: {exc}", "error")
            return False

        error = getattr(response, "error", None)
        if error:
            self._log(f"API test failed: {_error_text(error)}", "error")
            return False
        self._log("API connection OK", "success")
        return True
