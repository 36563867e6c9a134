"""
Gemini text generator for AdvisorBridge.

A fresh client is built on every call so a key rotated in the
environment takes effect without restarting the tracker.

Usage:
    bridge = AdvisorBridge(GeminiGenerator(), config.advisor)
"""

import os

from google import genai
from google.genai import types


class GeminiGenerator:
    """Async ``generate(prompt, model=..., temperature=..., max_output_tokens=...)``."""

    def __init__(self, api_key_env: str = "API_KEY") -> None:
        self._api_key_env = api_key_env

    async def __call__(
        self, prompt: str, *, model: str, temperature: float, max_output_tokens: int
    ) -> str:
        client = genai.Client(api_key=os.getenv(self._api_key_env))
        response = await client.aio.models.generate_content(
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=temperature,
                max_output_tokens=max_output_tokens,
            ),
        )
        return response.text or ""
