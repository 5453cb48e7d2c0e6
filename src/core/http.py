"""Shared httpx helpers for outbound provider calls."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from src.core.errors import ConfigurationError, ProviderError


def require_env(name: str) -> str:
    """Read a credential from the environment; missing is a configuration error."""
    value = os.environ.get(name)
    if not value:
        msg = f"{name} environment variable is required"
        raise ConfigurationError(msg)
    return value


@asynccontextmanager
async def client_scope(
    client: httpx.AsyncClient | None, timeout: float
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


async def request_json(
    client: httpx.AsyncClient,
    provider: str,
    method: str,
    url: str,
    **kwargs: Any,
) -> Any:
    """Perform a request and decode JSON, mapping every failure to ProviderError."""
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        msg = f"request to {url} failed: {e}"
        raise ProviderError(provider, msg) from e

    if not response.is_success:
        msg = f"HTTP {response.status_code}: {response.text[:200]}"
        raise ProviderError(provider, msg, status_code=response.status_code)

    try:
        return response.json()
    except ValueError as e:
        msg = "response body is not valid JSON"
        raise ProviderError(provider, msg, status_code=response.status_code) from e
