"""
Root test configuration and fixtures for the participation ingest.

This conftest.py provides common fixtures for all test categories:
- FakeStrapiClient: in-memory stand-in for strapi.StrapiClient that records
  every call, so tests can assert exact request counts
- settings: Settings built without reading a .env file
- Sample source rows

Note: sys.path manipulation is handled here to ensure imports work correctly.
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

# Add project root to path to allow imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from strapi.errors import ConflictError, StrapiAPIError  # noqa: E402


def _matches(record: dict[str, Any], filters: Mapping[str, Any]) -> bool:
    for key, expected in filters.items():
        # "participante.id" filters on the relation id stored under "participante"
        field_name = key.split(".", 1)[0]
        if str(record.get(field_name)) != str(expected):
            return False
    return True


class FakeStrapiClient:
    """In-memory Strapi collections with call recording.

    Attributes:
        calls: ("find" | "list" | "create", collection, payload) in call order
        search_errors: collection -> exception raised by find_first
        create_errors: collection -> exception raised by create
        race_on_create: collections where create first inserts the record
            (as a concurrent writer would) and then raises ConflictError
    """

    def __init__(self) -> None:
        self.collections: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.search_errors: dict[str, Exception] = {}
        self.create_errors: dict[str, Exception] = {}
        self.race_on_create: set[str] = set()
        self._next_id = 1
        self._lock = threading.Lock()

    def seed(self, collection: str, **fields: Any) -> int:
        """Insert a record directly, without recording a call."""
        with self._lock:
            entity_id = self._next_id
            self._next_id += 1
            self.collections.setdefault(collection, []).append({"id": entity_id, **fields})
            return entity_id

    def count(self, method: str, collection: str | None = None) -> int:
        return sum(1 for m, c, _ in self.calls if m == method and (collection is None or c == collection))

    def created(self, collection: str) -> list[dict[str, Any]]:
        """Payloads of every create call on a collection"""
        return [payload for m, c, payload in self.calls if m == "create" and c == collection]

    def find_first(self, collection: str, filters: Mapping[str, Any]) -> dict[str, Any] | None:
        self.calls.append(("find", collection, dict(filters)))
        if collection in self.search_errors:
            raise self.search_errors[collection]
        for record in self.collections.get(collection, []):
            if _matches(record, filters):
                return dict(record)
        return None

    def list_page(self, collection: str, page: int, page_size: int, fields: list[str]) -> list[dict[str, Any]]:
        self.calls.append(("list", collection, {"page": page, "page_size": page_size, "fields": list(fields)}))
        records = self.collections.get(collection, [])
        start = (page - 1) * page_size
        return [{f: record.get(f) for f in fields} for record in records[start : start + page_size]]

    def create(self, collection: str, data: Mapping[str, Any]) -> dict[str, Any]:
        self.calls.append(("create", collection, dict(data)))
        if collection in self.create_errors:
            raise self.create_errors[collection]
        if collection in self.race_on_create:
            self.race_on_create.discard(collection)
            self.seed(collection, **dict(data))
            raise ConflictError(
                f"{collection}: 400 - duplicate key value violates unique constraint", status_code=400
            )
        entity_id = self.seed(collection, **dict(data))
        return {"id": entity_id, **dict(data)}


@pytest.fixture
def fake_client():
    """Fresh in-memory Strapi client"""
    return FakeStrapiClient()


@pytest.fixture
def settings():
    """Settings isolated from any .env file"""
    from ingest.settings import Settings

    return Settings(
        _env_file=None,
        strapi_base_url="http://strapi.test/api",
        strapi_token="test-token",
        environment="local",
        process_mode="parallel",
        batch_size=100,
        chunk_size=150,
        skip_lookup=False,
        reference_data_path=None,
        reference_data_mode="auto",
        error_report_path="migration-errors.csv",
    )


@pytest.fixture(autouse=True)
def block_real_http():
    """Fail any test that would reach the network through requests."""
    error = StrapiAPIError("Real HTTP requests are disabled in tests")
    with patch("requests.sessions.Session.request", side_effect=error) as mock_request:
        yield mock_request


def make_row(**overrides: Any) -> dict[str, Any]:
    """A normalized source row with sensible defaults."""
    row: dict[str, Any] = {
        "id": "P-001",
        "email": "ana@example.org",
        "cct": "31DPR0001A",
        "programa": "Programa A",
        "implementacion": "Impl 1",
        "ciclo_escolar": "2024-2025",
        "periodo_de_implementacion": "Otoño",
        "nombre": "Ana",
        "primer_apellido": "López",
        "segundo_apellido": "Pérez",
        "edad": "34",
        "sexo": "F",
        "estado_civil": "NA",
        "lengua_indigena": "false",
        "hablante_maya": "true",
        "nivel_educativo": "Licenciatura",
        "puesto": "Docente",
        "estudiantes_a_cargo": "25",
        "constancia": "true",
    }
    row.update(overrides)
    return row


@pytest.fixture
def sample_row():
    return make_row()


@pytest.fixture
def row_factory():
    """Build source rows: row_factory(id="P-002", programa="Programa B")"""
    return make_row
