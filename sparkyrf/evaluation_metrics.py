import logging

import numpy as np

log = logging.getLogger(__name__)  # Get logger instance.


def area_under_curve(curve: np.ndarray) -> float:
    """
    Compute the area under a curve with the trapezoidal rule.

    Parameters
    ----------
    curve : np.ndarray
        The curve as (n, 2) array of (x, y) points, ordered along the curve.

    Returns
    -------
    float
        The area under the curve.
    """
    x, y = curve[:, 0], curve[:, 1]
    return float(((x[1:] - x[:-1]) * (y[1:] + y[:-1]) / 2.0).sum())


class BinaryClassificationMetrics:
    """
    Threshold-based evaluation of a binary classifier from its scores and the true labels.

    Every distinct score is a threshold; samples with a score greater than or equal to the threshold are predicted
    positive. With ``num_bins > 0``, the thresholds are down-sampled to roughly ``num_bins`` by grouping consecutive
    distinct scores.

    Attributes
    ----------
    false_positives : np.ndarray
        The number of false positives at each threshold.
    n_negatives : int
        The total number of negative samples.
    n_positives : int
        The total number of positive samples.
    num_bins : int
        The requested number of bins, 0 for no down-sampling.
    threshold_values : np.ndarray
        The thresholds in descending order.
    true_positives : np.ndarray
        The number of true positives at each threshold.
    """

    def __init__(self, scores: np.ndarray, labels: np.ndarray, num_bins: int = 0) -> None:
        """
        Count positive and negative samples per threshold.

        Parameters
        ----------
        scores : np.ndarray
            The classifier scores, higher means more likely positive.
        labels : np.ndarray
            The true labels, values > 0.5 are positive.
        num_bins : int
            The number of bins to down-sample the thresholds to. Default is 0 for no down-sampling.
        """
        scores = np.asarray(scores, dtype=np.float64).ravel()
        labels = np.asarray(labels, dtype=np.float64).ravel()
        if len(scores) != len(labels):
            raise ValueError(f"Got {len(scores)} scores but {len(labels)} labels.")
        if len(scores) == 0:
            raise ValueError("Cannot compute binary classification metrics without samples.")
        if num_bins < 0:
            raise ValueError(f"The number of bins must be non-negative, got {num_bins}.")
        self.num_bins = num_bins

        # Count positives and negatives per distinct score, in descending score order.
        distinct_scores, inverse = np.unique(-scores, return_inverse=True)
        distinct_scores = -distinct_scores
        is_positive = labels > 0.5
        positives = np.bincount(
            inverse, weights=is_positive.astype(np.float64), minlength=len(distinct_scores)
        )
        negatives = np.bincount(
            inverse, weights=(~is_positive).astype(np.float64), minlength=len(distinct_scores)
        )

        grouping = len(distinct_scores) // num_bins if num_bins > 0 else 0
        if grouping < 2:
            if num_bins > 0:
                log.info(
                    f"Curve is too small ({len(distinct_scores)}) for {num_bins} bins to be useful."
                )
        else:
            # Each group of consecutive scores is represented by its first, i.e., highest, score.
            starts = np.arange(0, len(distinct_scores), grouping)
            distinct_scores = distinct_scores[starts]
            positives = np.add.reduceat(positives, starts)
            negatives = np.add.reduceat(negatives, starts)

        self.threshold_values = distinct_scores
        self.true_positives = np.cumsum(positives)
        self.false_positives = np.cumsum(negatives)
        self.n_positives = int(is_positive.sum())
        self.n_negatives = len(labels) - self.n_positives

    def _precision(self) -> np.ndarray:
        predicted_positives = self.true_positives + self.false_positives
        return np.divide(
            self.true_positives,
            predicted_positives,
            out=np.ones_like(self.true_positives),
            where=predicted_positives > 0,
        )

    def _recall(self) -> np.ndarray:
        if self.n_positives == 0:
            return np.zeros_like(self.true_positives)
        return self.true_positives / self.n_positives

    def _false_positive_rate(self) -> np.ndarray:
        if self.n_negatives == 0:
            return np.zeros_like(self.false_positives)
        return self.false_positives / self.n_negatives

    def _by_threshold(self, values: np.ndarray) -> np.ndarray:
        return np.column_stack([self.threshold_values, values])

    def thresholds(self) -> np.ndarray:
        """
        Get the thresholds in descending order.

        Returns
        -------
        np.ndarray
            The thresholds.
        """
        return self.threshold_values.copy()

    def precision_by_threshold(self) -> np.ndarray:
        """
        Get the precision at each threshold. The precision is 1 if no sample is predicted positive.

        Returns
        -------
        np.ndarray
            (threshold, precision) pairs.
        """
        return self._by_threshold(self._precision())

    def recall_by_threshold(self) -> np.ndarray:
        """
        Get the recall at each threshold. The recall is 0 if there are no positive samples.

        Returns
        -------
        np.ndarray
            (threshold, recall) pairs.
        """
        return self._by_threshold(self._recall())

    def f_measure_by_threshold(self, beta: float = 1.0) -> np.ndarray:
        """
        Get the F-beta score at each threshold. The score is 0 where precision and recall are both 0.

        Parameters
        ----------
        beta : float
            The weight of recall in the F score (default: 1.0).

        Returns
        -------
        np.ndarray
            (threshold, F-beta score) pairs.
        """
        precision, recall = self._precision(), self._recall()
        beta_squared = beta * beta
        denominator = beta_squared * precision + recall
        f_measure = np.divide(
            (1.0 + beta_squared) * precision * recall,
            denominator,
            out=np.zeros_like(precision),
            where=precision + recall > 0,
        )
        return self._by_threshold(f_measure)

    def pr(self) -> np.ndarray:
        """
        Get the precision-recall curve, starting at recall 0 with the precision of the highest threshold.

        Returns
        -------
        np.ndarray
            (recall, precision) points.
        """
        curve = np.column_stack([self._recall(), self._precision()])
        return np.vstack([[0.0, curve[0, 1]], curve])

    def roc(self) -> np.ndarray:
        """
        Get the receiver operating characteristic curve from (0, 0) to (1, 1).

        Returns
        -------
        np.ndarray
            (false positive rate, true positive rate) points.
        """
        curve = np.column_stack([self._false_positive_rate(), self._recall()])
        return np.vstack([[0.0, 0.0], curve, [1.0, 1.0]])

    def area_under_pr(self) -> float:
        """
        Compute the area under the precision-recall curve.

        Returns
        -------
        float
            The area under the precision-recall curve.
        """
        return area_under_curve(self.pr())

    def area_under_roc(self) -> float:
        """
        Compute the area under the receiver operating characteristic curve.

        Returns
        -------
        float
            The area under the ROC curve.
        """
        return area_under_curve(self.roc())
