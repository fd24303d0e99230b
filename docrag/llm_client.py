"""Embedding and chat-completion clients with error handling.

One client class per provider; ``get_provider`` picks the class once from the
settings and every later call goes through the common ``ProviderClient``
interface.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
import structlog

from docrag.config import Settings
from docrag.errors import (
    EmbeddingError,
    GenerationError,
    InvalidConfig,
    UnsupportedProvider,
)

logger = structlog.get_logger()


class ProviderClient(ABC):
    """Async client for one embedding + chat-completion provider."""

    #: Provider name as used in EMBEDDING_PROVIDER
    name: str = ""
    #: Nearest neighbours to retrieve per question
    default_top_k: int = 5
    #: Character budget for the assembled context (None = unbounded)
    context_char_budget: Optional[int] = None

    def __init__(
        self,
        api_key: str,
        embedding_model: str,
        chat_model: str,
        base_url: str,
        temperature: float = 0.7,
        timeout: float = 60.0,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the provider client.

        Args:
            api_key: Bearer credential forwarded on every request
            embedding_model: Model identifier for embedding requests
            chat_model: Model identifier for chat-completion requests
            base_url: Provider API base URL
            temperature: Sampling temperature for chat completions
            timeout: Request timeout in seconds
            verify: Whether to verify TLS certificates
            transport: Optional httpx transport (used by tests)
        """
        if not api_key:
            raise InvalidConfig(f"Missing API key for provider {self.name}")

        self.api_key = api_key
        self.embedding_model = embedding_model
        self.chat_model = chat_model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.timeout = timeout
        self.verify = verify
        self._transport = transport

    @classmethod
    @abstractmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ProviderClient":
        """Build the client from application settings."""

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON payload and return the decoded JSON body.

        Raises:
            httpx.HTTPError: On transport errors or non-2xx responses
            httpx.InvalidURL: If the base URL is malformed
            ValueError: If the body is not JSON
        """
        async with httpx.AsyncClient(
            timeout=self.timeout,
            verify=self.verify,
            transport=self._transport,
        ) as client:
            response = await client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers=self._headers(),
            )
            response.raise_for_status()
            return response.json()

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding vector for a piece of text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: On transport errors or a malformed response
        """
        payload = {"input": text, "model": self.embedding_model}

        logger.debug(
            "embedding_request",
            provider=self.name,
            model=self.embedding_model,
            text_length=len(text),
        )

        try:
            data = await self._post("/embeddings", payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(
                "embedding_http_error",
                provider=self.name,
                error=str(e),
                status_code=_status_code(e),
            )
            raise EmbeddingError(f"{self.name} embedding request failed: {e}") from e
        except ValueError as e:
            raise EmbeddingError(f"{self.name} returned a non-JSON embedding response") from e

        embedding = _extract_embedding(data)
        if embedding is None:
            logger.error("embedding_malformed_response", provider=self.name)
            raise EmbeddingError(f"Invalid embedding returned from {self.name}")

        logger.debug("embedding_response", provider=self.name, dimension=len(embedding))
        return embedding

    async def generate(self, prompt: str) -> str:
        """Ask the chat-completion endpoint to answer a single-turn prompt.

        Args:
            prompt: Full prompt text

        Returns:
            Text of the first completion

        Raises:
            GenerationError: On transport errors or a malformed response
        """
        payload = {
            "model": self.chat_model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
        }

        logger.info(
            "chat_request",
            provider=self.name,
            model=self.chat_model,
            prompt_length=len(prompt),
        )

        try:
            data = await self._post("/chat/completions", payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(
                "chat_http_error",
                provider=self.name,
                error=str(e),
                status_code=_status_code(e),
            )
            raise GenerationError(f"{self.name} chat request failed: {e}") from e
        except ValueError as e:
            raise GenerationError(f"{self.name} returned a non-JSON chat response") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error("chat_malformed_response", provider=self.name)
            raise GenerationError(f"Malformed chat response from {self.name}") from e

        if not isinstance(content, str):
            raise GenerationError(f"Malformed chat response from {self.name}")

        logger.info("chat_response", provider=self.name, response_length=len(content))
        return content


class GigaChatClient(ProviderClient):
    """GigaChat API (tight context window)."""

    name = "GIGACHAT"
    default_top_k = 3
    context_char_budget = 1500

    def __init__(self, *args, client_id: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client_id = client_id

    @classmethod
    def from_settings(cls, settings, transport=None):
        return cls(
            api_key=settings.gigachat_api_key,
            embedding_model=settings.gigachat_embedding_model,
            chat_model=settings.gigachat_chat_model,
            base_url=settings.gigachat_base_url,
            temperature=settings.temperature,
            timeout=settings.http_timeout,
            verify=settings.gigachat_verify_ssl,
            transport=transport,
            client_id=settings.gigachat_client_id,
        )

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["Accept"] = "application/json"
        if self.client_id:
            headers["X-Client-Id"] = self.client_id
        return headers


class OpenRouterClient(ProviderClient):
    """OpenRouter API (OpenAI-compatible)."""

    name = "OPENROUTER"
    default_top_k = 5
    context_char_budget = None

    def __init__(self, *args, referer: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.referer = referer

    @classmethod
    def from_settings(cls, settings, transport=None):
        if not settings.openrouter_model:
            raise InvalidConfig("OPENROUTER_MODEL must name an embedding model")
        return cls(
            api_key=settings.openrouter_api_key,
            embedding_model=settings.openrouter_model,
            chat_model=settings.openrouter_chat_model,
            base_url=settings.openrouter_base_url,
            temperature=settings.temperature,
            timeout=settings.http_timeout,
            transport=transport,
            referer=settings.openrouter_referer,
        )

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        if self.referer:
            headers["HTTP-Referer"] = self.referer
        return headers


PROVIDERS = {
    GigaChatClient.name: GigaChatClient,
    OpenRouterClient.name: OpenRouterClient,
}


def get_provider(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderClient:
    """Instantiate the client for the configured provider.

    Raises:
        UnsupportedProvider: If EMBEDDING_PROVIDER names no known provider
        InvalidConfig: If the provider's credentials are missing
    """
    name = (settings.embedding_provider or "").strip().upper()
    client_class = PROVIDERS.get(name)
    if client_class is None:
        raise UnsupportedProvider(
            f"Unsupported provider '{settings.embedding_provider}'. "
            f"Expected one of: {', '.join(sorted(PROVIDERS))}"
        )

    client = client_class.from_settings(settings, transport=transport)
    logger.info(
        "provider_initialized",
        provider=client.name,
        embedding_model=client.embedding_model,
        chat_model=client.chat_model,
    )
    return client


def _extract_embedding(data: Any) -> Optional[List[float]]:
    """Return ``data[0].embedding`` if it is a non-empty numeric list."""
    try:
        embedding = data["data"][0]["embedding"]
    except (KeyError, IndexError, TypeError):
        return None

    if not isinstance(embedding, list) or not embedding:
        return None
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in embedding):
        return None
    return [float(v) for v in embedding]


def _status_code(error: Exception) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None
