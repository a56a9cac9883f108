"""
ASL gloss generation through a local Ollama server.

One non-streaming POST to /api/generate per flushed utterance. Failures of any
kind come back as an empty gloss so the live transcript keeps flowing.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

ASL_GLOSS_PROMPT = 'Convert this sentence into ASL gloss (uppercase, concise, correct syntax): "{text}"'


def build_gloss_prompt(text: str) -> str:
    return ASL_GLOSS_PROMPT.format(text=text)


class OllamaGlossClient:
    """
    Stateless text -> ASL gloss client.

    The HTTP call is blocking (requests) and is run in the default executor, so
    awaiting `generate_gloss` never stalls the event loop.
    """

    def __init__(
        self,
        url: str = "http://localhost:11434/api/generate",
        model: str = "phi3:latest",
        timeout: float = 30.0,
        http: Optional[Any] = None,
    ):
        """
        Args:
            url: Full Ollama generate endpoint.
            model: Ollama model tag.
            timeout: Per-request timeout in seconds.
            http: Object with a requests-compatible `post` (defaults to the requests module).
        """
        self.url = url
        self.model = model
        self.timeout = timeout
        self._http = http or requests

    def build_payload(self, text: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": build_gloss_prompt(text),
            "stream": False,
        }

    def generate_gloss_sync(self, text: str) -> str:
        """Blocking call. Returns the trimmed gloss, or "" on any failure."""
        start = time.perf_counter()
        try:
            response = self._http.post(self.url, json=self.build_payload(text), timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Ollama request error: %s", e)
            return ""
        if not response.ok:
            logger.warning("Ollama request failed: %s %s", response.status_code, response.reason)
            return ""
        try:
            data = response.json()
        except ValueError:
            logger.warning("Ollama returned a non-JSON body")
            return ""
        gloss = data.get("response") if isinstance(data, dict) else None
        if not isinstance(gloss, str):
            logger.warning("Ollama response has no 'response' text")
            return ""
        logger.debug("Gloss for %d chars in %.0f ms", len(text), (time.perf_counter() - start) * 1000)
        return gloss.strip()

    async def generate_gloss(self, text: str) -> str:
        """Async wrapper around generate_gloss_sync; never raises."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self.generate_gloss_sync, text)
        except Exception as e:
            logger.error("Gloss generation crashed: %s", e)
            return ""
