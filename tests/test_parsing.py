from __future__ import annotations

import uuid
from datetime import datetime, timezone

from bson import Binary, Int64, ObjectId

from conftest import analyze_response
from shardkey_advisor.parsing import format_value, parse_analysis, to_jsonable


def test_parse_full_response() -> None:
    raw = analyze_response(total=10_000, sampled=5_000, distinct=2_500, top_frequency=4)
    parsed = parse_analysis(raw, {"customerId": 1})

    kc = parsed.key_characteristics
    assert kc is not None
    assert kc.num_docs_total == 10_000
    assert kc.num_distinct_values == 2_500
    # ratio is taken over the sampled documents
    assert kc.cardinality_ratio == 0.5
    assert kc.most_common_values[0].value == '{"customerId":"c-1"}'
    assert kc.monotonicity.type == "not monotonic"

    assert parsed.read_distribution is not None
    assert parsed.read_distribution.percentage_of_single_shard_reads == 90.0
    assert parsed.write_distribution is not None
    assert parsed.write_distribution.sample_size.update == 100
    assert parsed.warnings == []


def test_missing_sections_stay_empty() -> None:
    parsed = parse_analysis({"ok": 1}, {"customerId": 1})
    assert parsed.key_characteristics is None
    assert parsed.read_distribution is None
    assert parsed.write_distribution is None
    assert parsed.warnings == []


def test_bson_numbers_are_accepted() -> None:
    raw = analyze_response()
    raw["keyCharacteristics"]["numDocsTotal"] = Int64(10_000)
    parsed = parse_analysis(raw, {"customerId": 1})
    assert parsed.key_characteristics is not None
    assert parsed.key_characteristics.num_docs_total == 10_000


def test_very_low_cardinality_is_an_error() -> None:
    raw = analyze_response(total=1000, sampled=1000, distinct=4, top_frequency=250)
    parsed = parse_analysis(raw, {"status": 1})
    severities = {w.message.split(" (")[0]: w.severity for w in parsed.warnings}
    assert severities["Very low cardinality"] == "error"
    assert "Low cardinality ratio" not in severities


def test_low_ratio_and_hotspot_warnings() -> None:
    raw = analyze_response(total=100_000, sampled=100_000, distinct=500, top_frequency=5_000)
    messages = [w.message for w in parse_analysis(raw, {"region": 1}).warnings]
    assert any(m.startswith("Low cardinality ratio (0.5%)") for m in messages)
    # 200 expected per value, 5000 observed
    assert any(m.startswith("Potential hotspot detected") and "5000 times" in m for m in messages)


def test_monotonic_key_warns() -> None:
    raw = analyze_response(monotonicity="monotonic", correlation=0.99)
    parsed = parse_analysis(raw, {"createdAt": 1})
    assert parsed.key_characteristics is not None
    assert parsed.key_characteristics.monotonicity.correlation_coefficient == 0.99
    assert any(w.message.startswith("Monotonically") for w in parsed.warnings)


def test_distribution_warnings() -> None:
    raw = analyze_response(single_shard_reads=20.0, scatter_gather_reads=75.0, shard_key_updates=8.0)
    messages = [w.message for w in parse_analysis(raw, {"customerId": 1}).warnings]
    assert any(m.startswith("High scatter-gather reads (75.0%)") for m in messages)
    assert any(m.startswith("8.0% of writes update the shard key") for m in messages)


def test_wide_key_warns_but_parses() -> None:
    key = {"a": 1, "b": 1, "c": 1, "d": 1}
    parsed = parse_analysis(analyze_response(), key)
    assert parsed.key_characteristics is not None
    assert parsed.warnings[0].severity == "warning"
    assert "4 fields" in parsed.warnings[0].message


def test_format_value() -> None:
    oid = ObjectId("64b7f0c2a1b2c3d4e5f60718")
    ident = uuid.UUID("12345678-1234-5678-1234-567812345678")
    assert format_value(None) == "null"
    assert format_value(oid) == 'ObjectId("64b7f0c2a1b2c3d4e5f60718")'
    assert format_value(ident) == f'UUID("{ident}")'
    assert format_value(Binary.from_uuid(ident)) == f'UUID("{ident}")'
    assert format_value({"$oid": str(oid)}) == f'ObjectId("{oid}")'
    assert format_value(True) == "true"
    assert format_value(42) == "42"


def test_to_jsonable_converts_bson_types() -> None:
    doc = {"_id": ObjectId("64b7f0c2a1b2c3d4e5f60718"), "at": datetime(2024, 1, 1, tzinfo=timezone.utc)}
    converted = to_jsonable(doc)
    assert converted["_id"] == {"$oid": "64b7f0c2a1b2c3d4e5f60718"}
    assert "$date" in converted["at"]
