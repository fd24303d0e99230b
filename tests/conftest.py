"""Pytest configuration and fixtures for unit tests."""
import httpx
import pytest

from docrag.config import Settings
from helpers import CHROMA_URL


@pytest.fixture
def make_transport():
    """Build an httpx MockTransport that records every request it serves."""

    def _make(handler):
        calls = []

        def _record(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return handler(request)

        transport = httpx.MockTransport(_record)
        transport.calls = calls
        return transport

    return _make


@pytest.fixture
def settings() -> Settings:
    """GigaChat settings with a Chroma store at a fake URL."""
    return Settings(
        embedding_provider="GIGACHAT",
        gigachat_api_key="giga-key",
        gigachat_base_url="https://giga.test/api/v1",
        openrouter_api_key="or-key",
        openrouter_base_url="https://openrouter.test/api/v1",
        openrouter_model="text-embedding-3-small",
        chroma_url=CHROMA_URL,
        chunk_size=1000,
        chunk_overlap=200,
    )
