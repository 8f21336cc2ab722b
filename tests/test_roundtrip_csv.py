import csv

import pytest

from integration.roundtrip_csv import CSV_COLUMNS, RoundtripCsvWriter


def read_rows(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


def test_header_has_37_unique_columns():
    assert len(CSV_COLUMNS) == 37
    assert len(set(CSV_COLUMNS)) == 37
    assert CSV_COLUMNS[0] == "ts_utc"
    assert CSV_COLUMNS[-1] == "sell_fee_base"


def test_header_written_once_across_runs(tmp_path):
    path = tmp_path / "out" / "rt.csv"

    with RoundtripCsvWriter(str(path)) as writer:
        writer.write_row({"dex": "meteora", "usd_notional": 10})
    with RoundtripCsvWriter(str(path)) as writer:
        writer.write_row({"dex": "meteora", "usd_notional": 25})
        writer.write_row({"dex": "meteora", "usd_notional": 50})

    rows = read_rows(path)
    assert rows[0] == list(CSV_COLUMNS)
    assert sum(1 for r in rows if r == list(CSV_COLUMNS)) == 1
    assert len(rows) == 4
    assert all(len(r) == 37 for r in rows)
    assert [r[CSV_COLUMNS.index("usd_notional")] for r in rows[1:]] == ["10", "25", "50"]


def test_header_written_into_existing_empty_file(tmp_path):
    path = tmp_path / "rt.csv"
    path.write_text("")
    with RoundtripCsvWriter(str(path)) as writer:
        writer.write_row({"dex": "meteora"})
    assert read_rows(path)[0] == list(CSV_COLUMNS)


def test_missing_values_are_empty(tmp_path):
    path = tmp_path / "rt.csv"
    with RoundtripCsvWriter(str(path)) as writer:
        writer.write_row({"dex": "meteora", "sqrt_price_x64": None})
        assert writer.rows_written == 1
    row = read_rows(path)[1]
    assert row[CSV_COLUMNS.index("sqrt_price_x64")] == ""
    assert row[CSV_COLUMNS.index("pool")] == ""


def test_unknown_column_rejected(tmp_path):
    with RoundtripCsvWriter(str(tmp_path / "rt.csv")) as writer:
        with pytest.raises(ValueError):
            writer.write_row({"not_a_column": 1})


def test_write_before_open_raises(tmp_path):
    with pytest.raises(RuntimeError):
        RoundtripCsvWriter(str(tmp_path / "rt.csv")).write_row({})
