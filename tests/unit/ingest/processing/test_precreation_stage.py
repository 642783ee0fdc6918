"""Tests for the precreation stage."""

from __future__ import annotations

import pytest

from ingest.core.models import EntityType, ImplementationInfo, ReferenceMode, UniqueSets
from ingest.data.cache.keyed_cache import CacheContext
from ingest.data.cache.reference_data_manager import ReferenceDataManager
from ingest.processing.precreation_stage import PrecreationStage
from ingest.resolution.entity_resolver import EntityResolver
from strapi.errors import StrapiAPIError, StrapiNetworkError


@pytest.fixture
def cache():
    return CacheContext()


@pytest.fixture
def stage(fake_client, cache):
    resolver = EntityResolver(fake_client, cache)
    return PrecreationStage(fake_client, cache, resolver, ReferenceDataManager(fake_client))


def impl(name="Impl 1", program="Programa A"):
    return ImplementationInfo(name=name, school_cycle="2024-2025", period="A", program=program)


class TestPrecreationStage:
    @pytest.mark.asyncio
    async def test_creates_parents_in_dependency_order(self, stage, fake_client, cache):
        survey_ids = [fake_client.seed("encuestas", clave=c) for c in ("encuesta_inicial", "encuesta_final")]
        unique_sets = UniqueSets(
            programs={"Programa A"},
            implementations={"Impl 1|2024-2025|A": impl()},
            attendance_fields={"asist_1"},
            attendance_modalities={"Impl 1|2024-2025|A|asist_1": "Presencial"},
            job_fields={"trabajo_1"},
        )

        validation = await stage.run(unique_sets)

        assert validation.is_valid, validation.issues
        created_order = [collection for method, collection, _ in fake_client.calls if method == "create"]
        assert created_order == ["programas", "implementaciones", "modulos", "modulos", "modulos", "asistencias", "trabajos"]

        program_id = cache.for_type(EntityType.PROGRAM).get("Programa A")
        [implementation_payload] = fake_client.created("implementaciones")
        assert implementation_payload == {
            "nombre": "Impl 1",
            "ciclo_escolar": "2024-2025",
            "periodo": "A",
            "programa": program_id,
            "encuestas": survey_ids,
        }

        impl_id = cache.for_type(EntityType.IMPLEMENTATION).get("Impl 1|2024-2025|A")
        assert cache.for_type(EntityType.MODULE).keys() == [f"mod1|{impl_id}", f"mod2|{impl_id}", f"mod3|{impl_id}"]
        assert fake_client.created("asistencias") == [
            {"clave_sesion": "asist_1", "modalidad": "Presencial", "implementacion": impl_id}
        ]
        assert fake_client.created("trabajos") == [{"nombre": "trabajo_1", "implementacion": impl_id}]

    @pytest.mark.asyncio
    async def test_initializes_reference_data(self, stage):
        await stage.run(UniqueSets())
        assert stage.reference_manager.mode is ReferenceMode.ON_DEMAND

    @pytest.mark.asyncio
    async def test_skips_implementation_without_program(self, stage, fake_client, cache):
        unique_sets = UniqueSets(implementations={"Impl X|2024-2025|A": impl(name="Impl X", program=None)})

        validation = await stage.run(unique_sets)

        assert fake_client.count("create", "implementaciones") == 0
        assert len(cache.for_type(EntityType.IMPLEMENTATION)) == 0
        assert not validation.is_valid
        assert "Implementation Impl X|2024-2025|A was not created" in validation.issues

    @pytest.mark.asyncio
    async def test_skips_implementation_whose_program_failed(self, stage, fake_client):
        fake_client.create_errors["programas"] = StrapiAPIError("programas: 500 - boom", status_code=500)
        unique_sets = UniqueSets(programs={"Programa A"}, implementations={"Impl 1|2024-2025|A": impl()})

        await stage.run(unique_sets)

        assert fake_client.count("create", "implementaciones") == 0
        assert stage.failed_units == ['program "Programa A"']

    @pytest.mark.asyncio
    async def test_one_failed_program_does_not_stop_others(self, stage, fake_client, cache):
        original_create = fake_client.create

        def flaky_create(collection, data):
            if data.get("nombre") == "Programa B":
                raise StrapiAPIError("programas: 500 - boom", status_code=500)
            return original_create(collection, data)

        fake_client.create = flaky_create

        await stage.run(UniqueSets(programs={"Programa A", "Programa B", "Programa C"}))

        assert set(cache.for_type(EntityType.PROGRAM).keys()) == {"Programa A", "Programa C"}

    @pytest.mark.asyncio
    async def test_survey_preload_failure_propagates(self, stage, fake_client):
        def failing_list_page(*args):
            raise StrapiNetworkError("encuestas: connection refused")

        fake_client.list_page = failing_list_page

        with pytest.raises(StrapiNetworkError):
            await stage.run(UniqueSets(programs={"Programa A"}))

    @pytest.mark.asyncio
    async def test_existing_entities_are_reused(self, stage, fake_client, cache):
        program_id = fake_client.seed("programas", nombre="Programa A")

        await stage.run(UniqueSets(programs={"Programa A"}))

        assert cache.for_type(EntityType.PROGRAM).get("Programa A") == program_id
        assert fake_client.count("create", "programas") == 0


class TestValidateCacheCompleteness:
    def test_reports_missing_dependents(self, stage, cache):
        cache.for_type(EntityType.PROGRAM).set("Programa A", 1)
        cache.for_type(EntityType.SURVEY).set("encuesta_inicial", 2)
        cache.for_type(EntityType.IMPLEMENTATION).set("Impl 1|2024-2025|A", 7)
        cache.for_type(EntityType.MODULE).set("mod1|7", 10)
        unique_sets = UniqueSets(
            implementations={"Impl 1|2024-2025|A": impl()},
            attendance_fields={"asist_1"},
            job_fields={"trabajo_1"},
        )

        validation = stage.validate_cache_completeness(unique_sets)

        assert not validation.is_valid
        assert "Implementation Impl 1|2024-2025|A is missing modules: mod2, mod3" in validation.issues
        assert "Implementation Impl 1|2024-2025|A is missing 1 attendance slot(s)" in validation.issues
        assert "Implementation Impl 1|2024-2025|A is missing 1 job(s)" in validation.issues
