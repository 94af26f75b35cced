import pytest

from archiveharvest.pipeline.normalize import (
    dedupe_strings,
    detect_advisory,
    humanize_collection,
    normalize_date,
    normalize_space,
    parse_duration_seconds,
    split_list_values,
)


@pytest.mark.parametrize("raw", ["PT3M25S", "3:25", "205", "3 min 25 sec", "00:03:25", "(3m25s)"])
def test_duration_forms_agree(raw):
    assert parse_duration_seconds(raw) == 205


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("PT1H", 3600),
        ("PT1.5S", 2),
        ("1:02:03", 3723),
        ("1 hr 3 min", 3780),
        ("2 hours", 7200),
        ("(approx. 29 min 30 sec)", 1770),
        ("90.4", 90),
    ],
)
def test_duration_values(raw, expected):
    assert parse_duration_seconds(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "unknown", "PT"])
def test_unparseable_duration_is_none(raw):
    assert parse_duration_seconds(raw) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1989-11-09T10:00:00Z", "1989-11-09"),
        ("circa 1974-06", "1974-06"),
        ("1950", "1950"),
        ("Recorded 2001-02-03, aired later", "2001-02-03"),
        ("  undated ", "undated"),
    ],
)
def test_normalize_date(raw, expected):
    assert normalize_date(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_normalize_date_empty(raw):
    assert normalize_date(raw) is None


def test_advisory_keywords_case_insensitive():
    assert detect_advisory("Contains offensive language.", None) is True
    assert detect_advisory(None, "CONTENT WARNING applies") is True
    assert detect_advisory("Public domain", "No known restrictions") is False
    assert detect_advisory() is False


def test_normalize_space_collapses_nbsp():
    assert normalize_space("  a\u00a0 b\n\tc  ") == "a b c"


def test_humanize_collection():
    assert humanize_collection("mayors_office-press") == "Mayors Office Press"


def test_split_list_values_splits_and_dedupes():
    assert split_list_values(["a; b", "b,c\nd", "  "]) == ["a", "b", "c", "d"]


def test_dedupe_strings_keeps_first_occurrence():
    assert dedupe_strings(["x", " x ", "y"], None, ["y", "z"]) == ["x", "y", "z"]
