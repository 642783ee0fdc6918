"""Strapi REST client used by the participation ingest."""

from __future__ import annotations

from .client import StrapiClient, StrapiConfig
from .errors import (
    ConflictError,
    NotFoundError,
    StrapiAPIError,
    StrapiError,
    StrapiNetworkError,
)

__all__ = [
    "StrapiClient",
    "StrapiConfig",
    "StrapiError",
    "ConflictError",
    "NotFoundError",
    "StrapiAPIError",
    "StrapiNetworkError",
]
