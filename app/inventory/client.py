# app/inventory/client.py
"""
HTTP access to inventory providers.

All network I/O of the reconciler happens here, before any database write.
Every call is bounded by a timeout; any transport or payload problem is
raised as ExternalProviderError for the sync job to record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.exceptions import ExternalProviderError
from app.inventory.adapters import extract_items

logger = logging.getLogger(__name__)

MAX_PAGES = 500
STATUS_CHECK_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class ProviderConnection:
    """Connection config copied off the provider row so no session is held during I/O."""

    provider_id: int
    name: str
    provider_type: str
    api_endpoint: str | None
    api_key: str | None


def _headers(conn: ProviderConnection) -> dict[str, str]:
    headers = {"Accept": "application/json"}
    if conn.api_key:
        headers["x-api-key"] = conn.api_key
    return headers


def _base_url(conn: ProviderConnection) -> str:
    if not conn.api_endpoint:
        raise ExternalProviderError(f"Provider '{conn.name}' has no API endpoint configured")
    return conn.api_endpoint.rstrip("/")


def _get_json(
    client: httpx.Client,
    conn: ProviderConnection,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    timeout: float,
) -> Any:
    try:
        response = client.get(url, params=params, headers=_headers(conn), timeout=timeout)
        response.raise_for_status()
        return response.json()
    except httpx.TimeoutException as exc:
        raise ExternalProviderError(f"Provider '{conn.name}' timed out: {exc}") from exc
    except httpx.HTTPStatusError as exc:
        raise ExternalProviderError(
            f"Provider '{conn.name}' answered HTTP {exc.response.status_code}"
        ) from exc
    except httpx.HTTPError as exc:
        raise ExternalProviderError(f"Provider '{conn.name}' request failed: {exc}") from exc
    except ValueError as exc:
        raise ExternalProviderError(f"Provider '{conn.name}' returned invalid JSON") from exc


def fetch_inventory_pages(
    conn: ProviderConnection,
    *,
    page_size: int,
    timeout: float,
    client: httpx.Client | None = None,
) -> list[dict[str, Any]]:
    """
    Fetch the full inventory listing, following pages until the provider's
    total is reached or a short page comes back.
    """
    url = f"{_base_url(conn)}/inventory"
    owns_client = client is None
    client = client or httpx.Client()

    raw_items: list[dict[str, Any]] = []
    try:
        for page in range(1, MAX_PAGES + 1):
            payload = _get_json(
                client,
                conn,
                url,
                params={"page": page, "limit": page_size},
                timeout=timeout,
            )
            items, total = extract_items(conn.provider_type, payload)
            raw_items.extend(items)

            if not items or len(items) < page_size:
                break
            if total is not None and len(raw_items) >= total:
                break
        else:
            logger.warning("Provider %s exceeded %s pages; truncating", conn.name, MAX_PAGES)
    finally:
        if owns_client:
            client.close()

    logger.debug("Fetched %s raw items from provider %s", len(raw_items), conn.name)
    return raw_items


def check_status(conn: ProviderConnection, *, client: httpx.Client | None = None) -> None:
    """GET {endpoint}/status; raises ExternalProviderError when unreachable."""
    url = f"{_base_url(conn)}/status"
    owns_client = client is None
    client = client or httpx.Client()
    try:
        _get_json(client, conn, url, timeout=STATUS_CHECK_TIMEOUT_SECONDS)
    finally:
        if owns_client:
            client.close()
