"""LLM client abstraction for OpenAI and Anthropic."""

import json
import logging
from typing import Optional

from autoflow.config import LLMProvider, get_settings

logger = logging.getLogger(__name__)


def extract_json(text: str) -> dict:
    """Pull the first JSON object out of an LLM response.

    Handles ```json fenced blocks and surrounding prose.

    Raises:
        ValueError: If no JSON object can be parsed.
    """
    response = text or ""
    if "```json" in response:
        start = response.find("```json") + 7
        end = response.find("```", start)
        response = response[start:end if end != -1 else None].strip()
    elif "```" in response:
        start = response.find("```") + 3
        end = response.find("```", start)
        response = response[start:end if end != -1 else None].strip()

    json_start = response.find("{")
    json_end = response.rfind("}") + 1
    if json_start != -1 and json_end > json_start:
        response = response[json_start:json_end]

    try:
        parsed = json.loads(response)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse LLM response as JSON: {e}\nResponse: {response}")

    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


class LLMClient:
    """Unified LLM client supporting OpenAI and Anthropic."""

    def __init__(
        self,
        provider: Optional[LLMProvider] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize LLM client.

        Args:
            provider: LLM provider to use (from settings if not specified)
            model: Model name (from settings if not specified)
            timeout: Per-request timeout in seconds
        """
        self.settings = get_settings()
        self.provider = provider or self.settings.llm_provider
        self.model = model or self.settings.get_llm_model()
        self.timeout = timeout or float(self.settings.command_timeout_seconds)
        self._client = None

    def _get_client(self):
        """Lazily initialize the LLM client."""
        if self._client is not None:
            return self._client

        api_key = self.settings.get_llm_api_key()
        if self.provider == LLMProvider.ANTHROPIC:
            import anthropic

            self._client = anthropic.Anthropic(api_key=api_key, timeout=self.timeout)
        else:
            import openai

            self._client = openai.OpenAI(api_key=api_key, timeout=self.timeout)

        return self._client

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> str:
        """Generate a response from the LLM.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature

        Returns:
            Generated text response
        """
        client = self._get_client()
        logger.debug("LLM request (%s, %d chars)", self.model, len(prompt))

        if self.provider == LLMProvider.ANTHROPIC:
            messages = [{"role": "user", "content": prompt}]

            kwargs = {
                "model": self.model,
                "max_tokens": max_tokens,
                "messages": messages,
                "temperature": temperature,
            }
            if system_prompt:
                kwargs["system"] = system_prompt

            response = client.messages.create(**kwargs)
            return response.content[0].text

        else:  # OpenAI
            messages = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})

            response = client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
            return response.choices[0].message.content

    def generate_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> dict:
        """Generate a JSON response from the LLM.

        Args:
            prompt: User prompt requesting JSON output
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens to generate

        Returns:
            Parsed JSON dict

        Raises:
            ValueError: If the response is not a JSON object.
        """
        json_system = (system_prompt or "") + "\n\nRespond only with valid JSON, no other text."

        response = self.generate(
            prompt=prompt,
            system_prompt=json_system.strip(),
            max_tokens=max_tokens,
            temperature=0.3,  # Lower temperature for structured output
        )
        return extract_json(response)
