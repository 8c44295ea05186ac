"""Tests for confidence scoring and the anti-masking guard."""

import pytest
from datetime import datetime

from fixlearn.core.confidence_scorer import (
    ConfidenceScorer,
    ConfidenceSnapshot,
    FactorBreakdown,
    PatternSample,
    RankingSample,
    ChainSample,
    LinkSample,
    ScoringInput,
)
from fixlearn.utils.config import ScoringThresholds


def _snapshot(overall):
    return ConfidenceSnapshot(timestamp=datetime.now(), overall_confidence=overall,
                              factors=FactorBreakdown(), masking_detected=False)


class TestPatternQuality:
    """Test per-pattern quality caps."""

    def test_small_sample_high_rate_is_capped(self):
        scorer = ConfidenceScorer()
        quality = scorer.assess_pattern_quality(PatternSample("issue_type:hang", 3, 1.0))

        assert quality == 0.3
        assert scorer.masking_warnings[0].source == "pattern:issue_type:hang"

    def test_perfect_rate_below_floor_is_capped(self):
        scorer = ConfidenceScorer()
        assert scorer.assess_pattern_quality(PatternSample("k", 30, 1.0)) == 0.2

    def test_recent_divergence_is_capped(self):
        scorer = ConfidenceScorer()
        sample = PatternSample("k", 40, 0.9, recent_results=(0, 0, 0, 0, 0))

        assert scorer.assess_pattern_quality(sample) == 0.4
        assert "diverges" in scorer.masking_warnings[0].reason

    def test_well_backed_pattern(self):
        scorer = ConfidenceScorer()
        sample = PatternSample("k", 60, 0.75, recent_results=(1, 1, 0, 1, 1))

        assert scorer.assess_pattern_quality(sample) == pytest.approx(0.852)
        assert scorer.masking_warnings == []

    @pytest.mark.parametrize("rate,attempts,expected", [
        (1.0, 5, 0.2),
        (0.97, 30, 0.3),
        (0.6, 5, 0.5),
        (0.4, 5, 0.4),
        (0.8, 100, 0.8),
    ])
    def test_success_rate_quality(self, rate, attempts, expected):
        assert ConfidenceScorer().assess_success_rate_quality(rate, attempts) == expected


class TestFactors:
    """Test factor computation."""

    def test_more_evidence_raises_pattern_recognition(self):
        """Three perfect outcomes score below sixty mostly-good ones."""
        scorer = ConfidenceScorer()

        thin, _ = scorer.compute_factors(ScoringInput(patterns=[
            PatternSample("issue_type:hang", 3, 1.0, (1, 1, 1))
        ]))
        thick, _ = scorer.compute_factors(ScoringInput(patterns=[
            PatternSample("issue_type:hang", 60, 0.75, (1, 1, 0, 1, 1))
        ]))

        assert thin.pattern_recognition == pytest.approx(22.5)
        assert thick.pattern_recognition == pytest.approx(92.6)
        assert thick.pattern_recognition > thin.pattern_recognition

    def test_chain_link_and_compliance_factors(self):
        scorer = ConfidenceScorer()
        factors, _ = scorer.compute_factors(ScoringInput(
            chains=[ChainSample(length=5, tagged=4)],
            links=[LinkSample(related=5, common_solutions=0, frequency=3)],
            compliance_ratio=0.8,
        ))

        assert factors.causal_analysis == pytest.approx(50 + 40)
        assert factors.cross_issue_learning == pytest.approx(50)
        assert factors.compliance == pytest.approx(80)

    def test_solution_factor_uses_success_rate_quality(self):
        scorer = ConfidenceScorer()
        factors, _ = scorer.compute_factors(ScoringInput(rankings=[
            RankingSample("init_hang", success_rate=1.0, attempts=6, alternatives=1)
        ]))

        assert factors.solution_optimization == pytest.approx(0.2 * 60 + 40 / 3)

    def test_data_quality_scale(self):
        scorer = ConfidenceScorer()
        factors, _ = scorer.compute_factors(ScoringInput(patterns=[
            PatternSample("a", 10, 0.5), PatternSample("b", 20, 0.5),
        ]))

        assert factors.data_quality == pytest.approx(12.5)

    def test_empty_input_scores_zero(self):
        snapshot = ConfidenceScorer().score(ScoringInput())

        assert snapshot.overall_confidence == 0.0
        assert snapshot.factors == FactorBreakdown()
        assert snapshot.sample_sizes['patterns'] == 0


class TestMaskingRules:
    """Test global masking detection."""

    def test_confidence_jump_is_flagged(self):
        scorer = ConfidenceScorer()
        scorer.history = [_snapshot(0.0), _snapshot(80.0), _snapshot(80.0)]

        snapshot = scorer.score(ScoringInput())

        assert snapshot.masking_detected
        assert any(w.source == "overall_confidence" and w.severity == "critical"
                   for w in snapshot.masking_warnings)

    def test_no_jump_with_short_history(self):
        scorer = ConfidenceScorer()
        scorer.history = [_snapshot(80.0), _snapshot(80.0)]

        assert not scorer.score(ScoringInput()).masking_detected

    def test_near_perfect_factor_with_thin_store(self):
        scorer = ConfidenceScorer()
        snapshot = scorer.score(ScoringInput(rankings=[
            RankingSample("db_lock", success_rate=0.99, attempts=200, alternatives=3)
        ]))

        assert snapshot.factors.solution_optimization > 95
        assert snapshot.masking_detected
        assert scorer.masking_warnings[-1].source == "solution_optimization"

    def test_warnings_are_deduplicated_and_capped(self):
        scorer = ConfidenceScorer(max_warnings=20)
        for i in range(30):
            scorer.flag_masking(f"source-{i}", "reason")
        assert scorer.flag_masking("source-29", "reason") is None

        assert len(scorer.masking_warnings) == 20
        assert scorer.masking_warnings[0].source == "source-10"

    def test_snapshot_reports_latest_warnings(self):
        scorer = ConfidenceScorer(report_warnings=5)
        for i in range(8):
            scorer.flag_masking(f"s{i}", "r")

        snapshot = scorer.score(ScoringInput())
        assert [w.source for w in snapshot.masking_warnings] == ["s3", "s4", "s5", "s6", "s7"]


class TestAutoAdjustAndHistory:
    """Test adjustments, history bounds and trend."""

    def test_critical_adjustments_for_every_weak_factor(self):
        snapshot = ConfidenceScorer().score(ScoringInput())

        assert len(snapshot.auto_adjustments) == 7
        assert {a.priority for a in snapshot.auto_adjustments} == {'critical'}
        assert snapshot.auto_adjustments[0].action == 'increase_pattern_collection'

    def test_high_priority_above_critical_threshold(self):
        scorer = ConfidenceScorer(ScoringThresholds(critical_confidence=0.0))
        snapshot = scorer.score(ScoringInput())

        assert {a.priority for a in snapshot.auto_adjustments} == {'high'}

    def test_adjustments_repeat_every_cycle(self):
        scorer = ConfidenceScorer()
        scorer.score(ScoringInput())
        scorer.score(ScoringInput())

        assert scorer.stats['auto_adjustments_issued'] == 14

    def test_history_is_capped(self):
        scorer = ConfidenceScorer(max_history=3)
        for _ in range(5):
            scorer.score(ScoringInput())

        assert len(scorer.history) == 3
        assert scorer.stats['scoring_cycles'] == 5

    def test_trend(self):
        scorer = ConfidenceScorer()
        assert scorer.get_trend() == 'insufficient_data'

        scorer.history = [_snapshot(20.0)] * 5 + [_snapshot(40.0)] * 4
        assert scorer.get_trend(40.0) == 'improving'
        assert scorer.get_trend() == 'insufficient_data'

        scorer.history = [_snapshot(40.0)] * 10
        assert scorer.get_trend() == 'stable'
        scorer.history = [_snapshot(40.0)] * 5 + [_snapshot(20.0)] * 5
        assert scorer.get_trend() == 'declining'

    def test_history_round_trip_restores_masking_flag(self):
        scorer = ConfidenceScorer()
        scorer.score(ScoringInput(rankings=[
            RankingSample("db_lock", success_rate=0.99, attempts=200, alternatives=3)
        ]))

        restored = ConfidenceScorer()
        restored.load_history(scorer.history_to_records())
        restored.load_warnings(scorer.warnings_to_records())
        restored.load_adjustments(scorer.adjustments_to_records())

        assert restored.masking_detected
        assert restored.history_to_records() == scorer.history_to_records()
        assert restored.warnings_to_records() == scorer.warnings_to_records()


class TestWarningsAndPenalties:
    """Test per-pass warnings and AI mistake penalties."""

    def test_score_pass_returns_only_new_warnings(self):
        scorer = ConfidenceScorer(max_warnings=2)
        scorer.flag_masking("earlier", "already open")
        scorer.flag_masking("earlier-2", "already open")
        data = ScoringInput(rankings=[
            RankingSample("db_lock", success_rate=0.99, attempts=200, alternatives=3)
        ])

        _, first = scorer.score_pass(data)
        _, second = scorer.score_pass(data)

        assert [w.source for w in first] == ["solution_optimization"]
        assert second == []

    def test_new_warnings_survive_a_full_buffer(self):
        scorer = ConfidenceScorer(max_warnings=1)
        data = ScoringInput(patterns=[
            PatternSample("issue_type:a", 2, 1.0),
            PatternSample("issue_type:b", 2, 1.0),
        ])

        _, raised = scorer.score_pass(data)

        assert [w.source for w in raised] == ["pattern:issue_type:a", "pattern:issue_type:b"]
        assert len(scorer.masking_warnings) == 1

    @pytest.mark.parametrize("mistake_type,amount", [
        ('masked_problem', 15),
        ('gave_up', 20),
        ('superficial_fix', 10),
        ('wrong_file', 5),
    ])
    def test_penalty_lowers_latest_confidence(self, mistake_type, amount):
        scorer = ConfidenceScorer()
        scorer.history = [_snapshot(40.0)]

        penalized = scorer.apply_penalty(mistake_type, "details")

        assert penalized.overall_confidence == 40.0 - amount
        assert penalized.masking_detected
        assert penalized.penalty == {'reason': mistake_type, 'amount': amount}
        assert scorer.history[-1] is penalized
        assert scorer.masking_warnings[-1].source == 'ai_mistake'
        assert scorer.masking_warnings[-1].reason == f"AI mistake: {mistake_type} - details"

    def test_penalty_floors_at_zero_and_round_trips(self):
        scorer = ConfidenceScorer()
        scorer.history = [_snapshot(12.0)]
        scorer.apply_penalty('gave_up')

        restored = ConfidenceScorer()
        restored.load_history(scorer.history_to_records())

        assert restored.history[-1].overall_confidence == 0.0
        assert restored.history[-1].penalty == {'reason': 'gave_up', 'amount': 20}
        assert restored.masking_detected

    def test_penalty_without_history_only_flags(self):
        scorer = ConfidenceScorer()

        assert scorer.apply_penalty('masked_problem') is None
        assert scorer.history == []
        assert scorer.masking_detected
        assert [w.source for w in scorer.take_raised()] == ['ai_mistake']
