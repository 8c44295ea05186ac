"""Tests for circular dependency and blocking chain detection."""

import pytest

from fixlearn.core.chain_detector import (
    ChainDetector,
    ChainKind,
    find_cycle_window,
    is_blocking,
    chain_signature,
)


class TestCycleWindow:
    """Test the sliding window used for circular dependencies."""

    def test_four_call_cycle(self):
        assert find_cycle_window(["A", "B", "C", "A"]) == ["A", "B", "C", "A"]

    def test_three_call_cycle_wins_at_same_start(self):
        assert find_cycle_window(["A", "B", "A", "C", "A"]) == ["A", "B", "A"]

    def test_later_window(self):
        assert find_cycle_window(["X", "A", "B", "A"]) == ["A", "B", "A"]

    def test_no_cycle(self):
        assert find_cycle_window(["A", "B"]) is None
        assert find_cycle_window(["A", "B", "C", "D", "E"]) is None


class TestCircularDependency:
    """Test recording of detected cycles."""

    def test_detection_and_default_mitigation(self):
        detector = ChainDetector()
        detection = detector.detect_circular_dependency(["A", "B", "C", "A"])

        assert detection.chain == ["A", "B", "C", "A"]
        assert detection.signature == "A → B → C → A"
        assert detection.frequency == 1
        assert detection.severity == 'critical'
        assert detection.mitigation.method == "make_async"
        assert detection.mitigation.confidence == 0.85
        assert detection.mitigation.source == "default"

    def test_repeat_increments_frequency(self):
        detector = ChainDetector()
        detector.detect_circular_dependency(["A", "B", "C", "A"])
        detection = detector.detect_circular_dependency(["A", "B", "C", "A"])

        assert detection.frequency == 2
        assert detector.count(ChainKind.CIRCULAR_DEPENDENCY) == 1

    def test_recorded_mitigation_is_returned(self):
        detector = ChainDetector()
        chain = ["A", "B", "C", "A"]
        detector.detect_circular_dependency(chain)

        detector.record_mitigation(ChainKind.CIRCULAR_DEPENDENCY, chain, "defer_init", True, "Defer B's init")
        detector.record_mitigation(ChainKind.CIRCULAR_DEPENDENCY, chain, "cache_result", True)
        detector.record_mitigation(ChainKind.CIRCULAR_DEPENDENCY, chain, "cache_result", False)

        mitigation = detector.get_mitigation(ChainKind.CIRCULAR_DEPENDENCY, chain)
        assert mitigation.method == "defer_init"
        assert mitigation.confidence == 1.0
        assert mitigation.description == "Defer B's init"
        assert mitigation.source == "circular_dependency_pattern"

        assert detector.detect_circular_dependency(chain).mitigation.method == "defer_init"

    def test_mitigation_for_unknown_chain_is_ignored(self):
        detector = ChainDetector()
        assert detector.record_mitigation(ChainKind.CIRCULAR_DEPENDENCY, ["X", "Y", "X"], "m", True) is None


class TestBlockingChain:
    """Test blocking chain detection."""

    def test_blocking_markers(self):
        assert is_blocking("readFileSync")
        assert is_blocking({'type': 'sync', 'method': 'loadConfig'})
        assert is_blocking({'method': 'fetch', 'blocking': True})
        assert not is_blocking({'type': 'async', 'method': 'fetch'})
        assert not is_blocking("loadConfig")

    def test_needs_two_blocking_operations(self):
        detector = ChainDetector()

        assert detector.detect_blocking_chain(["readFileSync", "fetch"]) is None

        detection = detector.detect_blocking_chain([
            "readFileSync",
            {'type': 'async', 'method': 'fetch'},
            {'type': 'sync', 'method': 'parseConfig'},
        ])
        assert detection.kind == ChainKind.BLOCKING_CHAIN
        assert detection.chain == ["readFileSync", "parseConfig"]
        assert detection.severity == 'high'
        assert detection.mitigation.method == "make_async"

    def test_unnamed_blocking_operations_are_not_a_chain(self):
        detector = ChainDetector()

        assert detector.detect_blocking_chain([{'blocking': True}, {'blocking': True}, ""]) is None
        assert detector.detect_blocking_chain([{'blocking': True}, "readFileSync"]) is None
        assert detector.stats['blocking_chains_detected'] == 0

    def test_non_text_method_names(self):
        detector = ChainDetector()

        assert not is_blocking({'method': 7})
        assert not is_blocking(None)

        detection = detector.detect_blocking_chain([
            {'type': 'sync', 'method': 7},
            None,
            {'type': 'sync', 'method': 'parseConfig'},
        ])
        assert detection.chain == ["7", "parseConfig"]


class TestRouting:
    """Test issue type routing and cross-chain lookups."""

    @pytest.mark.parametrize("issue_type,expected", [
        ("init_hang", ChainKind.CIRCULAR_DEPENDENCY),
        ("circular_import", ChainKind.CIRCULAR_DEPENDENCY),
        ("event_loop_blocking", ChainKind.CIRCULAR_DEPENDENCY),
        ("blocking_io", ChainKind.BLOCKING_CHAIN),
        ("sync_read", ChainKind.BLOCKING_CHAIN),
        ("chip_mismatch", None),
    ])
    def test_route_issue_type(self, issue_type, expected):
        assert ChainDetector().route_issue_type(issue_type) == expected

    def test_best_known_mitigation_across_chains(self):
        detector = ChainDetector()
        first = ["readFileSync", "writeFileSync"]
        second = ["execSync", "readFileSync"]
        detector.detect_blocking_chain(first)
        detector.detect_blocking_chain(second)
        detector.record_mitigation(ChainKind.BLOCKING_CHAIN, first, "use_streams", False)
        detector.record_mitigation(ChainKind.BLOCKING_CHAIN, second, "worker_thread", True)

        assert detector.best_known_mitigation(ChainKind.BLOCKING_CHAIN).method == "worker_thread"
        assert detector.best_known_mitigation(ChainKind.CIRCULAR_DEPENDENCY).source == "default"

    def test_call_graph_cycles(self):
        detector = ChainDetector()
        cycles = detector.find_call_graph_cycles(["A", "B", "C", "D", "E", "A", "F"])

        assert cycles == [["A", "B", "C", "D", "E"]]
        assert detector.find_call_graph_cycles(["A", "B", "C"]) == []

    def test_round_trip(self):
        detector = ChainDetector()
        detector.detect_circular_dependency(["A", "B", "A"])
        detector.record_mitigation(ChainKind.CIRCULAR_DEPENDENCY, ["A", "B", "A"], "m", True)

        restored = ChainDetector()
        restored.load_entries(ChainKind.CIRCULAR_DEPENDENCY, detector.to_entries(ChainKind.CIRCULAR_DEPENDENCY))

        assert restored.to_entries(ChainKind.CIRCULAR_DEPENDENCY) == detector.to_entries(ChainKind.CIRCULAR_DEPENDENCY)
        assert chain_signature(["A", "B", "A"]) in restored.records[ChainKind.CIRCULAR_DEPENDENCY]
