"""End-to-end pipeline tests against the in-memory Strapi backend."""

from __future__ import annotations

import io
import itertools

import pytest

from ingest.core.constants import EMAIL_ENDPOINT, PARTICIPATIONS_ENDPOINT
from ingest.core.errors import SourceDataError
from ingest.orchestrator.orchestrator import IngestOrchestrator


@pytest.fixture
def run_settings(settings, tmp_path):
    return settings.model_copy(update={"error_report_path": str(tmp_path / "errors.csv")})


@pytest.fixture
def rows(row_factory):
    return [
        row_factory(id="P-001", email="p1@example.org", programa="Programa A"),
        row_factory(id="P-002", email="p2@example.org", programa="Programa A"),
        row_factory(id="P-003", email="p3@example.org", programa="Programa B"),
    ]


class TestIngestOrchestrator:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
    async def test_each_parent_is_created_once(self, fake_client, run_settings, rows, order):
        fake_client.seed("encuestas", clave="encuesta_inicial")

        result = await IngestOrchestrator(fake_client, run_settings).run([rows[i] for i in order])

        assert result.total_records == 3
        assert result.success_count == 3
        assert result.error_count == 0
        assert result.error_report_path is None
        assert fake_client.count("create", "programas") == 2
        assert fake_client.count("create", "implementaciones") == 1
        assert fake_client.count("create", "modulos") == 3
        assert fake_client.count("create", "participantes") == 3
        assert fake_client.count("create", PARTICIPATIONS_ENDPOINT) == 3

    @pytest.mark.asyncio
    async def test_duplicate_remote_surveys_do_not_abort_run(self, fake_client, run_settings, rows):
        first_id = fake_client.seed("encuestas", clave="encuesta_inicial")
        fake_client.seed("encuestas", clave="encuesta_inicial")

        result = await IngestOrchestrator(fake_client, run_settings).run(rows)

        assert result.success_count == 3
        [implementation] = fake_client.created("implementaciones")
        assert implementation["encuestas"] == [first_id]

    @pytest.mark.asyncio
    async def test_reference_code_searched_once_per_run(self, fake_client, run_settings, rows):
        await IngestOrchestrator(fake_client, run_settings).run(rows)

        assert fake_client.count("find", "ccts") == 1

    @pytest.mark.asyncio
    async def test_second_run_creates_nothing(self, fake_client, run_settings, rows):
        await IngestOrchestrator(fake_client, run_settings).run(rows)
        creates_after_first_run = fake_client.count("create")

        result = await IngestOrchestrator(fake_client, run_settings).run(rows)

        assert result.success_count == 3
        assert fake_client.count("create") == creates_after_first_run
        assert len(fake_client.collections[EMAIL_ENDPOINT]) == 3

    @pytest.mark.asyncio
    async def test_runs_do_not_share_cached_ids(self, fake_client, run_settings, rows):
        orchestrator = IngestOrchestrator(fake_client, run_settings)
        await orchestrator.run(rows)
        first_cache = orchestrator.cache

        await orchestrator.run(rows)

        assert orchestrator.cache is not first_cache

    @pytest.mark.asyncio
    async def test_failed_rows_produce_error_report(self, fake_client, run_settings, rows, row_factory):
        rows.append(row_factory(id="", email="nobody@example.org"))

        result = await IngestOrchestrator(fake_client, run_settings).run(rows)

        assert result.success_count == 3
        assert result.error_count == 1
        assert result.error_report_path == run_settings.error_report_path
        with open(result.error_report_path, encoding="utf-8") as f:
            lines = f.read().splitlines()
        assert lines[1].startswith("UNKNOWN_ID,nobody@example.org,4,")

    @pytest.mark.asyncio
    async def test_preloaded_reference_extract_avoids_searches(self, fake_client, run_settings, rows):
        def opener():
            return io.StringIO("id,clave\n7,31DPR0001A\n8,31DPR0002B\n")

        await IngestOrchestrator(fake_client, run_settings, reference_opener=opener).run(rows)

        assert fake_client.count("find", "ccts") == 0
        assert {p["cct"] for p in fake_client.created("participantes")} == {7}

    @pytest.mark.asyncio
    async def test_run_file_missing_is_fatal(self, fake_client, run_settings, tmp_path):
        with pytest.raises(SourceDataError):
            await IngestOrchestrator(fake_client, run_settings).run_file(str(tmp_path / "missing.csv"))

    @pytest.mark.asyncio
    async def test_run_file(self, fake_client, run_settings, tmp_path):
        path = tmp_path / "participants.csv"
        path.write_text(
            "ID,Email,CCT,Programa,Implementación,Ciclo Escolar,Periodo de Implementación,Asist 1\n"
            "P-001,a@example.org,31DPR0001A,Programa A,Impl 1,2024-2025,Otoño,1\n",
            encoding="utf-8",
        )

        result = await IngestOrchestrator(fake_client, run_settings).run_file(str(path))

        assert result.success_count == 1
        assert fake_client.count("create", "asistencias") == 1
        assert fake_client.count("create", "participante-asistencia-registros") == 1
