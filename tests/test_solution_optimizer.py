"""Tests for the solution optimizer."""

import pytest

from fixlearn.core.solution_optimizer import SolutionOptimizer
from fixlearn.core.schema import Attempt


def _attempt(method, result, issue_type="db_lock"):
    return Attempt(issueType=issue_type, fixMethod=method, result=result)


class TestSolutionOptimizer:
    """Test ranking updates."""

    def test_failures_count_attempts_only(self):
        optimizer = SolutionOptimizer()
        for _ in range(3):
            optimizer.record(_attempt("retry", "failure"), None)

        ranking = optimizer.get_ranking("db_lock")
        assert ranking.attempts == 3
        assert ranking.best_solution is None
        assert ranking.alternatives == []

    def test_first_success_becomes_best(self):
        optimizer = SolutionOptimizer()
        ranking = optimizer.record(_attempt("retry", "success"), 0.4)

        assert ranking.best_solution == "retry"
        assert ranking.success_rate == 0.4

    def test_rerank_requires_strictly_greater_rate(self):
        optimizer = SolutionOptimizer()
        optimizer.record(_attempt("retry", "success"), 0.6)
        optimizer.record(_attempt("backoff", "success"), 0.6)

        ranking = optimizer.get_ranking("db_lock")
        assert ranking.best_solution == "retry"

        optimizer.record(_attempt("backoff", "success"), 0.8)
        assert ranking.best_solution == "backoff"
        assert ranking.success_rate == 0.8
        assert ranking.attempts == 3

    def test_alternatives_sorted_and_deduplicated(self):
        optimizer = SolutionOptimizer()
        optimizer.record(_attempt("a", "success"), 0.2)
        optimizer.record(_attempt("b", "success"), 0.9)
        optimizer.record(_attempt("c", "success"), 0.5)
        optimizer.record(_attempt("a", "success"), 0.7)

        alternatives = optimizer.get_ranking("db_lock").alternatives
        assert [a['method'] for a in alternatives] == ["b", "a", "c"]
        assert [a['success_rate'] for a in alternatives] == [0.9, 0.7, 0.5]

    def test_attempt_without_issue_type_is_ignored(self):
        optimizer = SolutionOptimizer()
        assert optimizer.record(Attempt(fixMethod="x", result="success"), 1.0) is None
        assert len(optimizer) == 0

    def test_round_trip(self):
        optimizer = SolutionOptimizer()
        optimizer.record(_attempt("a", "success"), 0.5)
        optimizer.record(_attempt("b", "failure"), None)

        restored = SolutionOptimizer()
        restored.load_entries(optimizer.to_entries())
        assert restored.to_entries() == optimizer.to_entries()
