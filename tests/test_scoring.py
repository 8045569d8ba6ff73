"""Tests for overlap scoring and top-K ranking."""

from types import SimpleNamespace

from panel_match.scoring import overlap_score, rank_results, top_k


def result(score, name=""):
    return SimpleNamespace(score=score, name=name)


class TestOverlapScore:
    """Tests for the normalized overlap score."""

    def test_perfect_overlap_is_one(self):
        assert overlap_score(500, 500, 500) == 1.0

    def test_symmetric(self):
        assert overlap_score(100, 300, 700) == overlap_score(100, 700, 300)

    def test_formula(self):
        assert overlap_score(50, 200, 300) == 2 * 50 / 500

    def test_zero_correspondences(self):
        assert overlap_score(0, 500, 500) == 0.0

    def test_failed_verification_forces_zero(self):
        assert overlap_score(400, 500, 500, verified=False) == 0.0

    def test_no_keypoints(self):
        assert overlap_score(3, 0, 0) == 0.0

    def test_always_within_range(self):
        for surviving, q, c in [(1, 1, 1), (10, 3, 4), (7, 1000, 2), (0, 5, 0)]:
            assert 0.0 <= overlap_score(surviving, q, c) <= 1.0

    def test_more_correspondences_higher_score(self):
        assert overlap_score(80, 500, 500) > overlap_score(20, 500, 500)


class TestRankResults:
    """Tests for result ranking."""

    def test_ranks_by_score_descending(self):
        ranked = rank_results([result(0.5), result(0.8), result(0.3)])
        assert [r.score for r in ranked] == [0.8, 0.5, 0.3]

    def test_zero_scores_excluded(self):
        ranked = rank_results([result(0.0), result(0.2), result(0.0)])
        assert [r.score for r in ranked] == [0.2]

    def test_ties_keep_scan_order(self):
        ranked = rank_results([result(0.4, "a"), result(0.4, "b"), result(0.4, "c")])
        assert [r.name for r in ranked] == ["a", "b", "c"]

    def test_empty_list(self):
        assert rank_results([]) == []


class TestTopK:
    """Tests for the top-K split."""

    def test_keeps_best_k(self):
        results = [result(s) for s in (0.1, 0.9, 0.5, 0.7)]
        kept, dropped = top_k(results, 2)
        assert [r.score for r in kept] == [0.9, 0.7]
        assert sorted(r.score for r in dropped) == [0.1, 0.5]

    def test_not_padded(self):
        kept, dropped = top_k([result(0.3), result(0.6)], 5)
        assert len(kept) == 2
        assert dropped == []

    def test_zero_scores_dropped(self):
        zero = result(0.0)
        kept, dropped = top_k([zero, result(0.2)], 5)
        assert len(kept) == 1
        assert dropped == [zero]
