"""Strapi REST client for collection search, paginated listing and creation."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, cast

import requests
from requests.adapters import HTTPAdapter

from ingest.logging_config import TRACE

from .errors import StrapiAPIError, StrapiError, StrapiNetworkError, classify_http_error

logger = logging.getLogger(__name__)

# Rate limit retry with exponential backoff
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_DELAY = 1.0
RATE_LIMIT_MAX_DELAY = 30.0


@dataclass
class StrapiConfig:
    """Configuration for Strapi API access."""

    base_url: str
    token: str
    timeout: float = 30.0
    pool_size: int = 32

    @classmethod
    def from_settings(cls, settings: Any) -> StrapiConfig:
        """Build from ingest Settings."""
        return cls(
            base_url=settings.strapi_base_url,
            token=settings.strapi_token,
            timeout=settings.request_timeout_seconds,
        )


def build_filter_params(filters: Mapping[str, Any]) -> dict[str, str]:
    """Build Strapi equality filters.

    Dotted keys address relation fields:
        {"nombre": "mod1"} -> {"filters[nombre][$eq]": "mod1"}
        {"participante.id": 7} -> {"filters[participante][id][$eq]": "7"}
    """
    params: dict[str, str] = {}
    for key, value in filters.items():
        path = "".join(f"[{part}]" for part in key.split("."))
        params[f"filters{path}[$eq]"] = "" if value is None else str(value)
    return params


def backoff_delay(attempt: int, base_delay: float = RATE_LIMIT_BASE_DELAY, max_delay: float = RATE_LIMIT_MAX_DELAY) -> float:
    """Exponential backoff delay (seconds) for a 0-based attempt."""
    return min(base_delay * (2**attempt), max_delay)


class StrapiClient:
    """Client for a Strapi v4 REST API.

    All methods are synchronous; the async pipeline calls them through
    asyncio.to_thread. Failures are raised as StrapiError subclasses.
    """

    def __init__(self, config: StrapiConfig, session: requests.Session | None = None):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.session = session or requests.Session()

        # Parallel batches issue many concurrent requests from worker threads
        adapter = HTTPAdapter(pool_connections=config.pool_size, pool_maxsize=config.pool_size)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.session.headers.update({"Accept": "application/json"})
        if config.token:
            self.session.headers["Authorization"] = f"Bearer {config.token}"

        self.request_count = 0

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request and return the decoded JSON body.

        Raises:
            StrapiNetworkError: connection failure or timeout
            ConflictError: uniqueness violation reported by the server
            NotFoundError: 404
            StrapiAPIError: any other non-2xx response or undecodable body
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        logger.log(TRACE, f"{method} {url} params={params} data={data}")

        for attempt in range(RATE_LIMIT_MAX_RETRIES + 1):
            self.request_count += 1
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=data,
                    timeout=self.config.timeout,
                )
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                raise StrapiNetworkError(f"{endpoint}: {e}", endpoint=endpoint) from e
            except requests.exceptions.RequestException as e:
                raise StrapiNetworkError(f"{endpoint}: request error: {e}", endpoint=endpoint) from e

            if response.status_code == 429 and attempt < RATE_LIMIT_MAX_RETRIES:
                wait_time = backoff_delay(attempt)
                logger.warning(
                    f"Rate limit hit on {endpoint} (attempt {attempt + 1}/{RATE_LIMIT_MAX_RETRIES}). "
                    f"Waiting {wait_time}s..."
                )
                time.sleep(wait_time)
                continue

            if not response.ok:
                try:
                    payload = response.json()
                except ValueError:
                    payload = None
                raise classify_http_error(response.status_code, payload, response.text, endpoint)

            try:
                return cast(dict[str, Any], response.json())
            except ValueError as e:
                raise StrapiAPIError(
                    f"{endpoint}: invalid JSON response", status_code=response.status_code, endpoint=endpoint
                ) from e

        # Only reached when every retry was rate limited
        raise StrapiAPIError(f"{endpoint}: rate limited after {RATE_LIMIT_MAX_RETRIES} retries", status_code=429)

    def find_first(self, collection: str, filters: Mapping[str, Any]) -> dict[str, Any] | None:
        """Return the first record matching all equality filters, or None.

        GET /{collection}?filters[field][$eq]=value&pagination[limit]=1
        """
        params: dict[str, Any] = build_filter_params(filters)
        params["pagination[limit]"] = 1
        body = self._make_request("GET", collection, params=params)
        records = body.get("data") or []
        return cast(dict[str, Any], records[0]) if records else None

    def list_page(self, collection: str, page: int, page_size: int, fields: list[str]) -> list[dict[str, Any]]:
        """Return one page of a collection restricted to the given fields.

        GET /{collection}?pagination[page]=N&pagination[pageSize]=M&fields=id,field
        """
        params = {
            "pagination[page]": page,
            "pagination[pageSize]": page_size,
            "fields": ",".join(fields),
        }
        body = self._make_request("GET", collection, params=params)
        return cast(list[dict[str, Any]], body.get("data") or [])

    def create(self, collection: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Create a record. POST /{collection} with {"data": {...}}; returns the created record."""
        body = self._make_request("POST", collection, data={"data": dict(data)})
        record = body.get("data")
        if not isinstance(record, dict) or "id" not in record:
            raise StrapiAPIError(f"{collection}: create response has no id", endpoint=collection, payload=body)
        return cast(dict[str, Any], record)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()


__all__ = ["StrapiClient", "StrapiConfig", "StrapiError", "build_filter_params"]
