import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import anthropic
import openai

from .errors import LLMServiceError

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r'^data:(?P<mime>image/[\w.+-]+);base64,(?P<data>.+)$', re.DOTALL)


class BaseAIProvider(ABC):
    """Basisklasse für alle LLM-Anbieter"""

    name = 'base'

    @abstractmethod
    def complete(self, system_prompt: str, user_prompt: str, images: Optional[List[str]] = None,
                 max_tokens: int = 1000, temperature: float = 0.7) -> str:
        """Eine einzelne Text-Completion, kein Streaming"""

    @property
    @abstractmethod
    def configured(self) -> bool:
        pass


class OpenAIProvider(BaseAIProvider):
    """Provider für OpenAI (Chat Completions mit Bildern)"""

    name = 'openai'

    def __init__(self, api_key: str = None, base_url: str = None, model: str = 'gpt-4o',
                 timeout: float = 120, client=None):
        self.api_key = api_key
        self.base_url = base_url or 'https://api.openai.com/v1'
        self.model = model
        self.client = client
        if self.client is None and self.api_key:
            self.client = openai.OpenAI(api_key=self.api_key, base_url=self.base_url, timeout=timeout)

    @property
    def configured(self) -> bool:
        return self.client is not None

    def _build_messages(self, system_prompt: str, user_prompt: str, images: Optional[List[str]]) -> List[Dict]:
        if not images:
            user_message = {'role': 'user', 'content': user_prompt}
        else:
            content = [{'type': 'text', 'text': user_prompt}]
            content.extend(
                {'type': 'image_url', 'image_url': {'url': image, 'detail': 'high'}}
                for image in images
            )
            user_message = {'role': 'user', 'content': content}
        return [{'role': 'system', 'content': system_prompt}, user_message]

    def complete(self, system_prompt: str, user_prompt: str, images: Optional[List[str]] = None,
                 max_tokens: int = 1000, temperature: float = 0.7) -> str:
        if not self.configured:
            raise LLMServiceError('OPENAI_API_KEY ist nicht konfiguriert')
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=self._build_messages(system_prompt, user_prompt, images),
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.OpenAIError as e:
            logger.error("OpenAI-Fehler: %s", e)
            raise LLMServiceError() from e

        if not response.choices or not response.choices[0].message.content:
            raise LLMServiceError('Leere Antwort vom Sprachmodell')
        return response.choices[0].message.content


class ClaudeProvider(BaseAIProvider):
    """Provider für Anthropic Claude"""

    name = 'anthropic'

    def __init__(self, api_key: str = None, model: str = 'claude-3-5-sonnet-20241022',
                 timeout: float = 120, client=None):
        self.api_key = api_key
        self.model = model
        self.client = client
        if self.client is None and self.api_key:
            self.client = anthropic.Anthropic(api_key=self.api_key, timeout=timeout)

    @property
    def configured(self) -> bool:
        return self.client is not None

    def _convert_images(self, images: Optional[List[str]]) -> List[Dict]:
        """Claude erwartet Bilder als base64-Blöcke oder URL-Quellen"""
        blocks = []
        for image in images or []:
            match = _DATA_URI_RE.match(image)
            if match:
                source = {
                    'type': 'base64',
                    'media_type': match.group('mime'),
                    'data': match.group('data'),
                }
            else:
                source = {'type': 'url', 'url': image}
            blocks.append({'type': 'image', 'source': source})
        return blocks

    def complete(self, system_prompt: str, user_prompt: str, images: Optional[List[str]] = None,
                 max_tokens: int = 1000, temperature: float = 0.7) -> str:
        if not self.configured:
            raise LLMServiceError('ANTHROPIC_API_KEY ist nicht konfiguriert')

        content = self._convert_images(images) + [{'type': 'text', 'text': user_prompt}]
        try:
            response = self.client.messages.create(
                model=self.model,
                system=system_prompt,
                messages=[{'role': 'user', 'content': content}],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except anthropic.AnthropicError as e:
            logger.error("Claude-Fehler: %s", e)
            raise LLMServiceError() from e

        text = ''.join(block.text for block in response.content if getattr(block, 'type', '') == 'text')
        if not text:
            raise LLMServiceError('Leere Antwort vom Sprachmodell')
        return text


class AIProviderManager:
    """Wählt den konfigurierten Provider aus"""

    def __init__(self, providers: Dict[str, BaseAIProvider], default: str = 'openai'):
        self.providers = providers
        self.default = default

    @classmethod
    def from_config(cls, config) -> 'AIProviderManager':
        providers = {
            'openai': OpenAIProvider(
                api_key=config.openai_api_key,
                base_url=config.openai_api_base,
                model=config.openai_model,
                timeout=config.llm_timeout_s,
            ),
            'anthropic': ClaudeProvider(
                api_key=config.anthropic_api_key,
                model=config.anthropic_model,
                timeout=config.llm_timeout_s,
            ),
        }
        return cls(providers, default=config.ai_provider)

    @property
    def provider(self) -> BaseAIProvider:
        provider = self.providers.get(self.default)
        if provider is None:
            raise LLMServiceError(f'Unbekannter AI-Provider: {self.default}')
        return provider

    def complete(self, system_prompt: str, user_prompt: str, images: Optional[List[str]] = None,
                 max_tokens: int = 1000, temperature: float = 0.7) -> str:
        provider = self.provider
        logger.info("LLM-Anfrage an %s (%d Bilder, max_tokens=%d)", provider.name, len(images or []), max_tokens)
        return provider.complete(system_prompt, user_prompt, images, max_tokens=max_tokens, temperature=temperature)
