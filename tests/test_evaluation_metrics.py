import numpy as np
import pytest
import sklearn.metrics

from sparkyrf.evaluation_metrics import BinaryClassificationMetrics, area_under_curve


class TestBinaryClassificationMetrics:
    """Test threshold-based binary classification metrics against hand-computed values and ``sklearn``."""

    scores = np.array([0.9, 0.8, 0.7, 0.6])
    labels = np.array([1.0, 0.0, 1.0, 0.0])

    def test_by_threshold(self) -> None:
        """Test precision, recall, and F-measures per threshold on a small hand-computed example."""
        metrics = BinaryClassificationMetrics(self.scores, self.labels)
        np.testing.assert_array_equal(metrics.thresholds(), [0.9, 0.8, 0.7, 0.6])
        np.testing.assert_array_equal(metrics.true_positives, [1, 1, 2, 2])
        np.testing.assert_array_equal(metrics.false_positives, [0, 1, 1, 2])
        assert (metrics.n_positives, metrics.n_negatives) == (2, 2)

        precision = metrics.precision_by_threshold()
        np.testing.assert_allclose(precision[:, 0], self.scores)
        np.testing.assert_allclose(precision[:, 1], [1.0, 0.5, 2 / 3, 0.5])
        np.testing.assert_allclose(metrics.recall_by_threshold()[:, 1], [0.5, 0.5, 1.0, 1.0])
        np.testing.assert_allclose(metrics.f_measure_by_threshold()[:, 1], [2 / 3, 0.5, 0.8, 2 / 3])
        # F2 = 5 * p * r / (4 * p + r)
        np.testing.assert_allclose(
            metrics.f_measure_by_threshold(beta=2.0)[:, 1],
            [2.5 / 4.5, 1.25 / 2.5, (10 / 3) / (11 / 3), 2.5 / 3.0],
        )

    def test_curves(self) -> None:
        """Test the PR and ROC curves and the areas under them on a small hand-computed example."""
        metrics = BinaryClassificationMetrics(self.scores, self.labels)
        np.testing.assert_allclose(
            metrics.roc(),
            [[0.0, 0.0], [0.0, 0.5], [0.5, 0.5], [0.5, 1.0], [1.0, 1.0], [1.0, 1.0]],
        )
        np.testing.assert_allclose(
            metrics.pr(),
            [[0.0, 1.0], [0.5, 1.0], [0.5, 0.5], [1.0, 2 / 3], [1.0, 0.5]],
        )
        assert metrics.area_under_roc() == pytest.approx(0.75)
        assert metrics.area_under_pr() == pytest.approx(0.5 + 7 / 24)
        assert metrics.area_under_roc() == pytest.approx(
            sklearn.metrics.roc_auc_score(self.labels, self.scores)
        )

    @pytest.mark.parametrize("random_state", [0, 1, 2])
    def test_area_under_roc_matches_sklearn(self, random_state: int) -> None:
        """
        Test that the area under the ROC curve without down-sampling equals ``sklearn``'s, also for tied scores.

        Parameters
        ----------
        random_state : int
            The random seed for scores and labels.
        """
        rng = np.random.default_rng(random_state)
        labels = rng.integers(0, 2, size=500).astype(float)
        scores = np.round(0.3 * labels + rng.uniform(size=500), 2)  # Rounding creates ties.
        metrics = BinaryClassificationMetrics(scores, labels, num_bins=0)
        assert metrics.area_under_roc() == pytest.approx(
            sklearn.metrics.roc_auc_score(labels, scores)
        )
        # At the lowest threshold, everything is predicted positive.
        np.testing.assert_allclose(metrics.pr()[-1], [1.0, labels.mean()])

    def test_ties(self) -> None:
        """Test that equal scores form a single threshold."""
        metrics = BinaryClassificationMetrics([0.5, 0.5, 0.5], [1, 0, 1])
        np.testing.assert_array_equal(metrics.thresholds(), [0.5])
        np.testing.assert_allclose(metrics.roc(), [[0, 0], [1, 1], [1, 1]])
        assert metrics.area_under_roc() == pytest.approx(0.5)

    def test_binning(self) -> None:
        """Test that thresholds are down-sampled to groups of consecutive scores represented by the highest one."""
        rng = np.random.default_rng(0)
        scores = rng.permutation(np.arange(1050)) / 1050
        labels = (scores > 0.5).astype(float)
        metrics = BinaryClassificationMetrics(scores, labels, num_bins=100)
        # 1050 // 100 = 10 scores per group, i.e., 105 groups.
        assert len(metrics.thresholds()) == 105
        np.testing.assert_allclose(metrics.thresholds(), np.sort(scores)[::-1][::10])
        assert metrics.true_positives[-1] == labels.sum()
        assert metrics.false_positives[-1] == len(labels) - labels.sum()
        # Only the group at the class boundary mixes positives and negatives.
        assert metrics.area_under_roc() > 0.99

    def test_no_binning_for_small_curves(self) -> None:
        """Test that no down-sampling happens if groups would hold fewer than two scores."""
        scores = np.linspace(0, 1, 150)
        metrics = BinaryClassificationMetrics(scores, scores > 0.3, num_bins=100)
        assert len(metrics.thresholds()) == 150
        assert metrics.num_bins == 100

    def test_single_class(self) -> None:
        """Test the conventions for missing positives or negatives."""
        only_negatives = BinaryClassificationMetrics([0.9, 0.1], [0, 0])
        np.testing.assert_array_equal(only_negatives.recall_by_threshold()[:, 1], [0.0, 0.0])
        np.testing.assert_array_equal(only_negatives.precision_by_threshold()[:, 1], [0.0, 0.0])
        np.testing.assert_array_equal(only_negatives.f_measure_by_threshold()[:, 1], [0.0, 0.0])
        assert only_negatives.area_under_roc() == pytest.approx(0.0)

        only_positives = BinaryClassificationMetrics([0.9, 0.1], [1, 1])
        np.testing.assert_array_equal(only_positives.roc()[:, 0], [0.0, 0.0, 0.0, 1.0])
        np.testing.assert_array_equal(only_positives.precision_by_threshold()[:, 1], [1.0, 1.0])
        assert only_positives.area_under_roc() == pytest.approx(1.0)
        assert only_positives.area_under_pr() == pytest.approx(1.0)

    def test_invalid_input(self) -> None:
        """Test that invalid input is rejected."""
        with pytest.raises(ValueError):
            BinaryClassificationMetrics([], [])
        with pytest.raises(ValueError):
            BinaryClassificationMetrics([0.1, 0.2], [1])
        with pytest.raises(ValueError):
            BinaryClassificationMetrics([0.1], [1], num_bins=-1)


def test_area_under_curve() -> None:
    """Test the trapezoidal rule."""
    assert area_under_curve(np.array([[0.0, 0.0], [1.0, 1.0]])) == pytest.approx(0.5)
    assert area_under_curve(np.array([[0.0, 1.0], [0.5, 1.0], [1.0, 0.0]])) == pytest.approx(0.75)
    assert area_under_curve(np.array([[0.3, 0.7]])) == 0.0
