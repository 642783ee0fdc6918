"""Tests for reading the participant CSV."""

import io

import pytest

from ingest.core.errors import SourceDataError
from ingest.input.csv_source import read_csv_rows, read_csv_stream


class TestReadCsvStream:
    def test_headers_are_normalized(self):
        stream = io.StringIO("ID,Email,Periodo de Implementación,Modalidad: Asist 1\nP-1,a@x.org,Otoño,Virtual\n")

        [row] = read_csv_stream(stream)

        assert row == {
            "id": "P-1",
            "email": "a@x.org",
            "periodo_de_implementacion": "Otoño",
            "modalidad_asist_1": "Virtual",
        }

    def test_extra_cells_are_dropped(self):
        [row] = read_csv_stream(io.StringIO("id,email\nP-1,a@x.org,extra\n"))
        assert None not in row

    def test_empty_stream_is_fatal(self):
        with pytest.raises(SourceDataError, match="no header"):
            read_csv_stream(io.StringIO(""))

    def test_header_only_is_fatal(self):
        with pytest.raises(SourceDataError, match="no data rows"):
            read_csv_stream(io.StringIO("id,email\n"))


class TestReadCsvRows:
    def test_missing_file_is_fatal(self, tmp_path):
        with pytest.raises(SourceDataError, match="not found"):
            read_csv_rows(str(tmp_path / "missing.csv"))

    def test_reads_file_with_bom(self, tmp_path):
        path = tmp_path / "participants.csv"
        path.write_bytes("\ufeffid,email\nP-1,a@x.org\nP-2,b@x.org\n".encode())

        rows = read_csv_rows(str(path))

        assert [row["id"] for row in rows] == ["P-1", "P-2"]
