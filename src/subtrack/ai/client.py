"""HTTP client for an OpenAI-compatible chat completions endpoint.

The client makes exactly one request per call; retry, circuit breaking and
concurrency limits are applied around it by the ResilientCaller.

Privacy Constraints:
- Never log prompts or message content above DEBUG
- Never log the API key
"""

from __future__ import annotations

import json
import logging
import re

import httpx

from ..config import LLMConfig
from ..errors import MalformedResponseError, RemoteHTTPError

logger = logging.getLogger(__name__)


class LLMClient:
    """Thin synchronous chat-completions client returning parsed JSON objects."""

    def __init__(self, config: LLMConfig, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize the client.

        Args:
            config: Endpoint, model and timeout settings.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.config = config

        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        # Use explicit timeout configuration:
        # - connect: 10 seconds for initial connection
        # - read: full timeout for waiting for the model response
        self._client = httpx.Client(
            base_url=config.base_url.rstrip("/"),
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
            headers=headers,
            transport=transport,
        )

    def complete_json(self, system_prompt: str, user_prompt: str, temperature: float) -> dict:
        """Send one chat completion request and return the JSON object it answered with.

        Raises:
            RemoteHTTPError: Non-success HTTP status.
            MalformedResponseError: Empty answer or not a JSON object.
            httpx.TransportError: Connection problems and timeouts.
        """
        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }

        logger.debug("Calling model %s at %s", self.config.model, self.config.base_url)
        response = self._client.post("/chat/completions", json=payload)

        if response.status_code >= 400:
            raise RemoteHTTPError(
                response.status_code,
                response.text[:200],
                target=self.config.target_name,
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(
                f"Unexpected completion envelope: {e}", target=self.config.target_name
            ) from e

        logger.debug("Model %s returned %d chars", self.config.model, len(content or ""))
        return parse_json_object(content, target=self.config.target_name)

    def close(self) -> None:
        """Close HTTP client."""
        self._client.close()

    def __enter__(self) -> LLMClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()


_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def parse_json_object(content: str | None, target: str | None = None) -> dict:
    """Parse a model answer into a dict.

    Handles markdown code fences and surrounding whitespace. Anything that is
    not a single JSON object is malformed.
    """
    if not content or not content.strip():
        raise MalformedResponseError("Empty response", target=target)

    cleaned = _CODE_FENCE_RE.sub("", content.strip()).strip()

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Response is not valid JSON: {e}", target=target) from e

    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"Expected a JSON object, got {type(data).__name__}", target=target
        )
    return data
