"""
ContextRAG - Composite LLM Service
==================================

Delegates each capability to the first configured provider that has it,
so a text-only provider can be paired with a document-capable one.

Required capabilities are checked at construction; a missing capability
raises ConfigurationError before any batch work starts.

Usage:
    service = CompositeLLMService(
        [OpenAIService(api_key=...), AnthropicService(api_key=...)],
        require_documents=True,
    )
    await service.generate_with_document(prompt, pdf_bytes)   # -> Anthropic
    await service.generate(prompt)                            # -> OpenAI
"""

import logging
from typing import List, Optional, Sequence, Type

from contextrag.providers.base import (
    DocumentGenerator,
    LLMResponse,
    StructuredGenerator,
    StructuredResult,
    T,
    TextGenerator,
)
from contextrag.shared.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _first(providers: Sequence[object], capability: type) -> Optional[object]:
    for provider in providers:
        if isinstance(provider, capability):
            return provider
    return None


def _name(provider: object) -> str:
    return getattr(provider, "provider_name", type(provider).__name__)


class CompositeLLMService(TextGenerator, DocumentGenerator, StructuredGenerator):
    """Capability router over one or more providers."""

    def __init__(
        self,
        providers: Sequence[object],
        require_text: bool = True,
        require_documents: bool = False,
        require_structured: bool = False
    ):
        if not providers:
            raise ConfigurationError("At least one LLM provider is required")

        self.providers = list(providers)
        self._text = _first(self.providers, TextGenerator)
        self._document = _first(self.providers, DocumentGenerator)
        self._structured = _first(self.providers, StructuredGenerator)
        # Structured extraction over a document needs both on one provider
        self._structured_document = next(
            (
                p for p in self.providers
                if isinstance(p, DocumentGenerator)
                and isinstance(p, StructuredGenerator)
                and getattr(p, "supports_documents", True)
            ),
            None,
        )

        missing = []
        if require_text and self._text is None:
            missing.append("text generation")
        if require_documents and self._document is None:
            missing.append("document-grounded generation")
        if require_structured and self._structured is None:
            missing.append("structured generation")
        if missing:
            raise ConfigurationError(
                f"No configured provider supports: {', '.join(missing)}",
                details={
                    "providers": [_name(p) for p in self.providers],
                    "missing": missing,
                },
            )

        logger.info(
            "LLM capabilities: "
            f"text={_name(self._text) if self._text else None}, "
            f"document={_name(self._document) if self._document else None}, "
            f"structured={_name(self._structured) if self._structured else None}"
        )

    @property
    def provider_name(self) -> str:
        return "+".join(_name(p) for p in self.providers)

    @property
    def supports_documents(self) -> bool:
        return self._document is not None

    @property
    def supports_structured_documents(self) -> bool:
        return self._structured_document is not None

    def _require(self, provider: Optional[object], capability: str) -> object:
        if provider is None:
            raise ConfigurationError(f"No configured provider supports {capability}")
        return provider

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> LLMResponse:
        provider = self._require(self._text, "text generation")
        return await provider.generate(
            prompt, system=system, max_tokens=max_tokens, temperature=temperature
        )

    async def generate_with_document(
        self,
        prompt: str,
        document: bytes,
        mime_type: str = "application/pdf",
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> LLMResponse:
        provider = self._require(self._document, "document-grounded generation")
        return await provider.generate_with_document(
            prompt,
            document,
            mime_type=mime_type,
            system=system,
            max_tokens=max_tokens,
            temperature=temperature,
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
        if document is not None:
            provider = self._require(
                self._structured_document, "structured generation over documents"
            )
        else:
            provider = self._require(self._structured, "structured generation")
        return await provider.generate_structured(
            prompt,
            schema,
            document=document,
            system=system,
            max_retries=max_retries,
            max_tokens=max_tokens,
            temperature=temperature,
        )
