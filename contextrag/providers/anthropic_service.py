"""
ContextRAG - Anthropic Generation Service
=========================================

Text, document-grounded (PDF) and structured generation through the
Anthropic Messages API.

Usage:
    service = AnthropicService(api_key="...", model="claude-sonnet-4-20250514")
    response = await service.generate_with_document(prompt, pdf_bytes)
"""

import base64
import logging
from typing import Dict, List, Optional

import anthropic

from contextrag.providers.base import BaseLLMService, DocumentGenerator, LLMResponse
from contextrag.providers.errors import translate_sdk_error
from contextrag.shared.exceptions import ConfigurationError, ContentPolicyError
from contextrag.shared.models import TokenUsage

logger = logging.getLogger(__name__)


class AnthropicService(BaseLLMService, DocumentGenerator):
    """Anthropic provider: text, document and structured capabilities."""

    supports_documents = True

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 8192,
        temperature: float = 0.3,
        timeout: float = 600.0,
        client: Optional[anthropic.AsyncAnthropic] = None
    ):
        super().__init__(model=model, max_tokens=max_tokens, temperature=temperature)
        if client is None and not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is required for the anthropic provider")
        # SDK retries are disabled; RetryPolicy owns retries
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key, max_retries=0, timeout=timeout
        )
        logger.info(f"Initialized Anthropic client with model: {self.model}")

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @staticmethod
    def _document_block(document: bytes, mime_type: str) -> Dict:
        return {
            "type": "document",
            "source": {
                "type": "base64",
                "media_type": mime_type,
                "data": base64.standard_b64encode(document).decode("ascii"),
            },
        }

    def _build_messages(
        self,
        messages: List[Dict[str, str]],
        document: Optional[bytes],
        mime_type: str
    ) -> List[Dict]:
        built = []
        for i, message in enumerate(messages):
            if i == 0 and document is not None:
                built.append({
                    "role": message["role"],
                    "content": [
                        self._document_block(document, mime_type),
                        {"type": "text", "text": message["content"]},
                    ],
                })
            else:
                built.append({"role": message["role"], "content": message["content"]})
        return built

    async def _complete(
        self,
        messages: List[Dict[str, str]],
        system: Optional[str],
        max_tokens: int,
        temperature: float,
        document: Optional[bytes] = None,
        mime_type: str = "application/pdf"
    ) -> LLMResponse:
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": self._build_messages(messages, document, mime_type),
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.AnthropicError as e:
            raise translate_sdk_error(e, anthropic, self.provider_name) from e

        if response.stop_reason == "refusal":
            raise ContentPolicyError(
                "anthropic refused to process the content",
                details={"provider": self.provider_name, "model": self.model},
            )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = TokenUsage(
            input_tokens=getattr(response.usage, "input_tokens", 0) or 0,
            output_tokens=getattr(response.usage, "output_tokens", 0) or 0,
        )
        if response.stop_reason == "max_tokens":
            logger.warning(f"Anthropic response truncated at {max_tokens} tokens")

        return LLMResponse(
            text=text,
            usage=usage,
            model=getattr(response, "model", self.model),
            stop_reason=response.stop_reason,
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
        max_tokens, temperature = self._resolve(max_tokens, temperature)
        return await self._complete(
            [{"role": "user", "content": prompt}],
            system,
            max_tokens,
            temperature,
            document=document,
            mime_type=mime_type,
        )
