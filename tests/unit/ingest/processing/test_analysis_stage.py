"""Tests for the analysis stage."""

from __future__ import annotations

import logging

from ingest.core.models import ImplementationInfo
from ingest.processing.analysis_stage import AnalysisStage, implementation_key


class TestAnalysisStage:
    def test_collects_unique_entities(self, row_factory):
        rows = [
            row_factory(id="P-1", programa="Programa A", cct="C1"),
            row_factory(id="P-2", programa="Programa B", cct="C2"),
            row_factory(id="P-3", programa="Programa A", cct="C1"),
        ]

        result = AnalysisStage().analyze(rows)

        assert result.rows_analyzed == 3
        assert result.records == rows
        assert result.unique_sets.programs == {"Programa A", "Programa B"}
        assert result.unique_sets.reference_codes == {"C1", "C2"}
        assert list(result.unique_sets.implementations) == ["Impl 1|2024-2025|Otoño"]

    def test_implementation_first_sighting_wins(self, row_factory):
        rows = [row_factory(programa="Programa A"), row_factory(programa="Programa B")]

        implementations = AnalysisStage().analyze(rows).unique_sets.implementations

        assert implementations["Impl 1|2024-2025|Otoño"] == ImplementationInfo(
            name="Impl 1", school_cycle="2024-2025", period="Otoño", program="Programa A"
        )

    def test_incomplete_implementation_is_ignored(self, row_factory):
        result = AnalysisStage().analyze([row_factory(periodo_de_implementacion="")])
        assert result.unique_sets.implementations == {}

    def test_blank_values_are_not_collected(self, row_factory):
        result = AnalysisStage().analyze([row_factory(cct="", programa="  ")])
        assert result.unique_sets.reference_codes == set()
        assert result.unique_sets.programs == set()

    def test_attendance_and_job_fields(self, row_factory):
        row = row_factory(
            asist_1="1",
            trip_2="",
            sesion_3="1",
            trabajo_final="1",
            evidencia_1="NA",
            modalidad_asist_1="Presencial",
            modalidad_sesion_3="NA",
        )

        unique_sets = AnalysisStage().analyze([row]).unique_sets

        assert unique_sets.attendance_fields == {"asist_1", "trip_2", "sesion_3"}
        assert unique_sets.job_fields == {"trabajo_final", "evidencia_1"}
        assert unique_sets.attendance_modalities == {"Impl 1|2024-2025|Otoño|asist_1": "Presencial"}

    def test_conflicting_modality_keeps_first(self, row_factory, caplog):
        rows = [
            row_factory(asist_1="1", modalidad_asist_1="Presencial"),
            row_factory(asist_1="1", modalidad_asist_1="Virtual"),
        ]

        with caplog.at_level(logging.WARNING):
            unique_sets = AnalysisStage().analyze(rows).unique_sets

        assert unique_sets.attendance_modalities["Impl 1|2024-2025|Otoño|asist_1"] == "Presencial"
        assert "Conflicting modality" in caplog.text

    def test_is_deterministic(self, row_factory):
        rows = [row_factory(id=f"P-{i}", programa=f"Programa {i % 3}", asist_1="1") for i in range(20)]

        first = AnalysisStage().analyze(rows).unique_sets
        second = AnalysisStage().analyze(rows).unique_sets

        assert first == second

    def test_implementation_key_from_row(self, row_factory):
        assert implementation_key(row_factory()) == "Impl 1|2024-2025|Otoño"
