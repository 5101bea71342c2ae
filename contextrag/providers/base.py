"""
ContextRAG - Generation Capability Interfaces
==============================================

Narrow capability interfaces, composed per provider:

- TextGenerator: prompt -> text
- DocumentGenerator: prompt + document bytes -> text
- StructuredGenerator: prompt -> validated pydantic model, retrying
  validation failures with feedback appended to the conversation

Providers translate SDK exceptions into the shared taxonomy
(RateLimitError, QuotaExceededError, ContentPolicyError,
TransientServiceError, ConfigurationError) inside `_complete`; nothing above
this layer inspects SDK exception types.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel

from contextrag.shared.exceptions import (
    ConfigurationError,
    LLMParsingError,
    StructuredOutputError,
)
from contextrag.shared.models import TokenUsage
from contextrag.shared.parsing import extract_and_parse_json

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

STRUCTURED_FEEDBACK = (
    "Your previous response could not be used: {error}\n"
    "Respond again with ONLY valid JSON matching the requested structure."
)


# =============================================================================
# Response Types
# =============================================================================

@dataclass
class LLMResponse:
    """Text response with token usage."""
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    stop_reason: Optional[str] = None


@dataclass
class StructuredResult(Generic[T]):
    """Validated structured response."""
    data: T
    usage: TokenUsage = field(default_factory=TokenUsage)
    attempts: int = 1
    raw_text: str = ""


# =============================================================================
# Capability Interfaces
# =============================================================================

class TextGenerator(ABC):
    """Plain text generation."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> LLMResponse:
        """Generate text for a prompt."""
        pass


class DocumentGenerator(ABC):
    """Generation grounded on an attached document (PDF)."""

    @abstractmethod
    async def generate_with_document(
        self,
        prompt: str,
        document: bytes,
        mime_type: str = "application/pdf",
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> LLMResponse:
        pass


class StructuredGenerator(ABC):
    """Generation validated against a pydantic schema."""

    @abstractmethod
    async def generate_structured(
        self,
        prompt: str,
        schema: Type[T],
        document: Optional[bytes] = None,
        system: Optional[str] = None,
        max_retries: int = 2,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> StructuredResult[T]:
        pass


# =============================================================================
# Shared Provider Base
# =============================================================================

class BaseLLMService(TextGenerator, StructuredGenerator):
    """
    Base for SDK-backed services.

    Subclasses implement `_complete` over a message list; text, document and
    structured generation are built on it here.
    """

    supports_documents: bool = False

    def __init__(
        self,
        model: str,
        max_tokens: int = 8192,
        temperature: float = 0.3
    ):
        self.model = model
        self.default_max_tokens = max_tokens
        self.default_temperature = temperature

    @abstractmethod
    async def _complete(
        self,
        messages: List[Dict[str, str]],
        system: Optional[str],
        max_tokens: int,
        temperature: float,
        document: Optional[bytes] = None,
        mime_type: str = "application/pdf"
    ) -> LLMResponse:
        """
        Run one completion. `document`, when given, is attached to the first
        user message. Must raise only shared-taxonomy errors.
        """
        pass

    def _resolve(self, max_tokens: Optional[int], temperature: Optional[float]):
        return (
            max_tokens or self.default_max_tokens,
            self.default_temperature if temperature is None else temperature,
        )

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> LLMResponse:
        max_tokens, temperature = self._resolve(max_tokens, temperature)
        return await self._complete(
            [{"role": "user", "content": prompt}], system, max_tokens, temperature
        )

    async def generate_structured(
        self,
        prompt: str,
        schema: Type[T],
        document: Optional[bytes] = None,
        system: Optional[str] = None,
        max_retries: int = 2,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> StructuredResult[T]:
        """
        Generate and validate JSON, feeding validation errors back.

        On a parse/validation failure the failed response and a corrective
        message are appended to the conversation, up to `max_retries` times.

        Raises:
            StructuredOutputError: when every attempt fails validation
        """
        if document is not None and not self.supports_documents:
            raise ConfigurationError(
                f"{self.provider_name} does not support document-grounded generation"
            )

        max_tokens, temperature = self._resolve(max_tokens, temperature)
        messages = [{"role": "user", "content": prompt}]
        usage = TokenUsage()
        last_error: Optional[LLMParsingError] = None

        for attempt in range(1, max_retries + 2):
            response = await self._complete(
                messages, system, max_tokens, temperature, document=document
            )
            usage.add(response.usage)
            try:
                data = extract_and_parse_json(response.text, schema)
                return StructuredResult(
                    data=data, usage=usage, attempts=attempt, raw_text=response.text
                )
            except LLMParsingError as e:
                last_error = e
                logger.warning(
                    f"{self.provider_name} structured output invalid "
                    f"(attempt {attempt}/{max_retries + 1}): {e}"
                )
                messages = messages + [
                    {"role": "assistant", "content": response.text},
                    {"role": "user", "content": STRUCTURED_FEEDBACK.format(error=e)},
                ]

        raise StructuredOutputError(
            f"Structured output failed validation after {max_retries + 1} attempts: {last_error}",
            details={"schema": schema.__name__, "attempts": max_retries + 1},
        )
