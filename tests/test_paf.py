import pytest

from poreselect.engine import (
    Alignment,
    Classification,
    Decision,
    MappingResult,
    format_paf,
    parse_paf_line,
)
from poreselect.engine.paf import format_diagnostic


def _mapped() -> MappingResult:
    return MappingResult(
        read_id="read-1",
        channel=12,
        chunk_count=2,
        classification=Classification.MAPPED,
        query_length=800,
        alignment=Alignment(
            target="chr1",
            strand="+",
            target_length=5000,
            target_start=100,
            target_end=900,
            query_start=0,
            query_end=800,
            matches=40,
            block_length=800,
            mapq=60,
        ),
        map_time=0.0125,
        wait_time=0.002,
        decision=Decision.EJECT,
        decision_elapsed=1.5,
        unblock_delay=0.1,
    )


def test_format_mapped_line():
    fields = format_paf(_mapped()).split("\t")
    assert fields[:12] == [
        "read-1", "800", "0", "800", "+", "chr1", "5000", "100", "900", "40", "800", "60",
    ]
    assert fields[12:] == ["ch:i:12", "ck:i:2", "mt:f:12.50", "wt:f:2.00", "ej:f:1500.00", "dl:f:0.100"]


def test_format_unmapped_line():
    result = MappingResult(
        read_id="read-2",
        channel=3,
        chunk_count=10,
        classification=Classification.UNMAPPED,
        query_length=4000,
        decision=Decision.KEEP,
        decision_elapsed=None,
    )
    fields = format_paf(result).split("\t")
    assert fields[:12] == ["read-2", "4000"] + ["*"] * 9 + ["255"]
    assert fields[-1] == "kp:f:*"
    assert not any(f.startswith("dl:") for f in fields)


def test_format_without_decision():
    result = MappingResult(read_id="r", channel=1, chunk_count=1, classification=Classification.ENDED)
    assert format_paf(result).count("\t") == 15


def test_parse_round_trip_for_summaries():
    record = parse_paf_line(format_paf(_mapped()) + "\n")
    assert record.read_id == "read-1"
    assert record.mapped
    assert record.target == "chr1"
    assert record.tags["ch"] == "12"
    assert record.decision is Decision.EJECT
    assert record.decision_ms == pytest.approx(1500.0)


def test_parse_skips_diagnostics():
    assert parse_paf_line(format_diagnostic("received chunk 3 of r after unblocking")) is None
    assert parse_paf_line("\n") is None
    with pytest.raises(ValueError):
        parse_paf_line("read\t100\t*")


def test_parse_unmapped_with_missing_elapsed():
    result = MappingResult(
        read_id="r", channel=1, chunk_count=1,
        classification=Classification.ENDED, decision=Decision.ENDED,
    )
    record = parse_paf_line(format_paf(result))
    assert not record.mapped
    assert record.target is None
    assert record.decision is Decision.ENDED
    assert record.decision_ms is None
