"""
Tests for the pure allocation engine.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Optional

from app.services.allocation import (
    RoutingMode,
    clamp_weight,
    depends_on_history,
    expand_by_weight,
    fnv1a_32,
    pick,
)


@dataclass
class T:
    id: str
    name: Optional[str] = None
    weight: Optional[int] = 1


def run_clicks(targets, mode, clicks, sample_size=200):
    """Simulate sequential clicks the way pick-and-bump feeds the engine."""
    history: list[str] = []
    for _ in range(clicks):
        recent = list(reversed(history))[:sample_size]
        chosen = pick("creator", None, targets, mode, recent_target_ids=recent)
        history.append(chosen.id)
    return Counter(history)


def test_fnv1a_known_vectors():
    assert fnv1a_32("") == 2166136261
    assert fnv1a_32("a") == 0xE40C292C
    assert fnv1a_32("foobar") == 0xBF9CF968


def test_fnv1a_stays_in_32_bits():
    assert 0 <= fnv1a_32("viewer-" * 50) < 2**32


def test_clamp_weight():
    assert clamp_weight(None) == 1
    assert clamp_weight(0) == 1
    assert clamp_weight(-5) == 1
    assert clamp_weight(7) == 7
    assert clamp_weight(1000) == 100


def test_expand_by_weight_replicates_targets():
    slots = expand_by_weight([T("a", "A", 2), T("b", "B", 0)])
    assert [s.target.id for s in slots] == ["a", "a", "b"]


def test_empty_pool_returns_none():
    for mode in RoutingMode:
        assert pick("creator", "viewer", [], mode) is None


def test_unknown_mode_parses_as_single():
    assert RoutingMode.parse("bogus") is RoutingMode.SINGLE
    assert RoutingMode.parse(None) is RoutingMode.SINGLE
    assert RoutingMode.parse("weighted") is RoutingMode.WEIGHTED


def test_single_prefers_default_target():
    targets = [T("a", "Alpha"), T("b", "Bravo")]
    assert pick("creator", None, targets, RoutingMode.SINGLE, default_target_id="b").id == "b"


def test_single_falls_back_to_first_by_name():
    targets = [T("z-id", "Zulu"), T("a-id", "Alpha")]
    assert pick("creator", None, targets, RoutingMode.SINGLE).id == "a-id"
    # A default that is no longer in the active pool is ignored
    assert pick("creator", None, targets, RoutingMode.SINGLE, default_target_id="gone").id == "a-id"


def test_sticky_is_stable_for_a_viewer():
    targets = [T("t1", "One"), T("t2", "Two"), T("t3", "Three")]
    first = pick("creator", "viewer-42", targets, RoutingMode.STICKY)
    for _ in range(20):
        assert pick("creator", "viewer-42", targets, RoutingMode.STICKY).id == first.id


def test_sticky_ignores_input_order_and_history():
    targets = [T("t1", "One"), T("t2", "Two"), T("t3", "Three")]
    a = pick("creator", "viewer-7", targets, RoutingMode.STICKY, recent_target_ids=["t1"] * 50)
    b = pick("creator", "viewer-7", list(reversed(targets)), RoutingMode.STICKY)
    assert a.id == b.id
    assert a.id == sorted(t.id for t in targets)[fnv1a_32("viewer-7") % 3]


def test_sticky_without_viewer_rotates():
    targets = [T("t1", "One"), T("t2", "Two")]
    counts = run_clicks(targets, RoutingMode.STICKY, 10)
    assert counts == {"t1": 5, "t2": 5}


def test_round_robin_balances_and_breaks_ties_by_pool_order():
    targets = [T("b", "Bravo"), T("a", "Alpha"), T("c", "Charlie")]
    assert pick("creator", None, targets, RoutingMode.ROUND_ROBIN).id == "a"
    counts = run_clicks(targets, RoutingMode.ROUND_ROBIN, 30)
    assert counts == {"a": 10, "b": 10, "c": 10}


def test_round_robin_picks_least_recent():
    targets = [T("a", "Alpha"), T("b", "Bravo")]
    chosen = pick("creator", None, targets, RoutingMode.ROUND_ROBIN, recent_target_ids=["a", "a", "b"])
    assert chosen.id == "b"


def test_weighted_nine_clicks_split_three_six():
    targets = [T("a", "A", 1), T("b", "B", 2)]
    counts = run_clicks(targets, RoutingMode.WEIGHTED, 9)
    assert counts == {"a": 3, "b": 6}


def test_weighted_converges_to_weight_ratio():
    targets = [T("heavy", "Heavy", 3), T("light", "Light", 1)]
    counts = run_clicks(targets, RoutingMode.WEIGHTED, 200)
    assert counts == {"heavy": 150, "light": 50}

    # Past the sample window the ratio holds to within one pick
    counts = run_clicks(targets, RoutingMode.WEIGHTED, 400)
    assert abs(counts["light"] - 100) <= 1


def test_weighted_zero_weight_still_receives_traffic():
    targets = [T("a", "A", 0), T("b", "B", 1)]
    counts = run_clicks(targets, RoutingMode.WEIGHTED, 10)
    assert counts == {"a": 5, "b": 5}


def test_history_dependence():
    assert not depends_on_history(RoutingMode.SINGLE, None)
    assert not depends_on_history(RoutingMode.STICKY, "viewer")
    assert depends_on_history(RoutingMode.STICKY, None)
    assert depends_on_history(RoutingMode.ROUND_ROBIN, None)
    assert depends_on_history(RoutingMode.WEIGHTED, "viewer")
