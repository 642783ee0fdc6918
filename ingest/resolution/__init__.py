"""Entity resolution (get-or-create) against the remote backend."""

from __future__ import annotations

from .entity_resolver import EntityResolver, ResolverStats

__all__ = ["EntityResolver", "ResolverStats"]
