import pytest

from supplyjudge.rules import TriageRules
from supplyjudge.schemas import AnalysisUnit
from supplyjudge.triage import classify, find_similar_popular, levenshtein, partition


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ("serde", "serde", 0),
        ("serde", "sede", 1),
        ("tokio", "tokyio", 1),
        ("clap", "clep", 1),
        ("completely", "different", 8),
        ("", "abc", 3),
    ],
)
def test_levenshtein(a, b, expected):
    assert levenshtein(a, b) == expected
    assert levenshtein(b, a) == expected


def test_typosquat_window_excludes_identical_names():
    assert find_similar_popular("serde") is None
    assert find_similar_popular("sede") == "serde"
    assert find_similar_popular("serde-json") is None
    assert find_similar_popular("completely") is None


def test_classify_decisions():
    assert classify("serde") == (False, "trusted")
    assert classify("malicious-example").deep
    assert classify("sede").deep
    assert classify("backdoor-utils") == (True, "contains 'backdoor'")
    assert classify("bitcoin-miner").deep
    assert classify("itoa") == (False, "default")


def test_trusted_list_beats_suspicious_substring():
    rules = TriageRules(trusted=frozenset({"wallet-core"}))
    assert not classify("wallet-core", rules).deep
    assert classify("wallet-core").deep


def test_partition_keeps_enumeration_order():
    units = [AnalysisUnit(name=n, version="1.0.0") for n in ["serde", "sede", "itoa", "backdoor-utils", "tokyio"]]
    deep, light = partition(units)
    assert [u.name for u in deep] == ["sede", "backdoor-utils", "tokyio"]
    assert [u.name for u in light] == ["serde", "itoa"]


def test_unrelated_names_are_not_typosquats():
    assert find_similar_popular("completely") is None
    assert find_similar_popular("different") is None
    assert classify("completely") == (False, "default")
    assert classify("different") == (False, "default")
