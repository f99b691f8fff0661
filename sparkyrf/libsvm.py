import logging
import pathlib
from typing import Sequence

import numpy as np
import scipy.sparse
from sklearn.datasets import load_svmlight_file
from sklearn.utils.validation import check_random_state

log = logging.getLogger(__name__)  # Get logger instance.


class LabeledDataset:
    """
    Binary classification dataset of sparse feature vectors with labels in {0, 1}.

    Attributes
    ----------
    n_features : int
        The dimensionality of the feature vectors.
    n_samples : int
        The number of records.
    x : scipy.sparse.csr_matrix
        The feature vectors, one row per record.
    y : numpy.ndarray
        The corresponding labels.

    Methods
    -------
    get_class_frequency()
        Get class frequency (either as absolute counts or as relative fraction).
    subset()
        Select the records with the given indices.
    partition()
        Split the record indices into contiguous partitions.
    random_split()
        Randomly split the records according to the given weights.
    get_local_subset()
        Select the partitions assigned to one rank.
    """

    def __init__(
        self,
        x: scipy.sparse.csr_matrix | np.ndarray,
        y: np.ndarray,
        n_features: int | None = None,
    ) -> None:
        """
        Create a dataset from features and labels.

        Parameters
        ----------
        x : scipy.sparse.csr_matrix | numpy.ndarray
            The feature vectors, one row per record. Dense arrays are converted to CSR.
        y : numpy.ndarray
            The corresponding labels.
        n_features : int, optional
            The dimensionality of the feature vectors. Default is the number of columns of x.
        """
        if x.shape[0] != len(y):
            raise ValueError(
                f"Number of feature vectors ({x.shape[0]}) and labels ({len(y)}) differ."
            )
        self.x = scipy.sparse.csr_matrix(x, dtype=np.float64)
        self.y = np.asarray(y, dtype=np.float64)
        self.n_samples = len(self.y)
        self.n_features = self.x.shape[1] if n_features is None else n_features

    def __len__(self) -> int:
        """Return the number of records."""
        return self.n_samples

    def __str__(self) -> str:
        """
        Summarize the dataset by its size and class frequencies.

        Returns
        -------
        str
            Summary of the dataset.
        """
        histogram = ", ".join(
            f"{label:g}: {frequency:4.2f}"
            for label, frequency in self.get_class_frequency(relative=True).items()
        )
        return f"LabeledDataset({self.n_samples} samples, {self.n_features} features, classes: {histogram})"

    def get_class_frequency(self, relative: bool = False) -> dict[float, float]:
        """
        Get class frequency (either as absolute counts or as relative fraction).

        Parameters
        ----------
        relative : bool
            Whether to return the absolute or relative class frequency.

        Returns
        -------
        dict[float, float]
            A dict mapping each label to its frequency in y.
        """
        labels, frequencies = np.unique(self.y, return_counts=True)
        if relative:
            frequencies = frequencies / frequencies.sum()
        return dict(zip(labels.tolist(), frequencies.tolist()))

    def subset(self, indices: np.ndarray) -> "LabeledDataset":
        """
        Select the records with the given indices.

        Parameters
        ----------
        indices : numpy.ndarray
            The indices of the records to select.

        Returns
        -------
        LabeledDataset
            The selected records as new dataset with the same dimensionality.
        """
        return LabeledDataset(self.x[indices], self.y[indices], self.n_features)

    def partition(self, min_partitions: int) -> list[np.ndarray]:
        """
        Split the record indices into ``min_partitions`` contiguous partitions of (almost) equal size.

        There are fewer partitions only if there are fewer records than ``min_partitions``.

        Parameters
        ----------
        min_partitions : int
            The minimum number of partitions.

        Returns
        -------
        list[numpy.ndarray]
            The record indices of each non-empty partition.
        """
        if min_partitions < 1:
            raise ValueError(f"The number of partitions must be positive, got {min_partitions}.")
        n_partitions = min(min_partitions, self.n_samples)
        if n_partitions == 0:
            return []
        return np.array_split(np.arange(self.n_samples), n_partitions)

    def random_split(
        self,
        weights: Sequence[float],
        random_state: int | np.random.RandomState | None = None,
    ) -> list["LabeledDataset"]:
        """
        Randomly split the records according to the given weights.

        The weights are normalized to sum to one. Each record draws one uniform random number which decides the split
        it is assigned to, so the split sizes are only approximately proportional to the weights. The relative order of
        the records is kept within each split.

        Parameters
        ----------
        weights : Sequence[float]
            The non-negative relative sizes of the splits.
        random_state : int | np.random.RandomState, optional
            The random state used for the assignment.

        Returns
        -------
        list[LabeledDataset]
            One dataset per weight.
        """
        weights_array = np.asarray(weights, dtype=np.float64)
        if (weights_array < 0).any() or weights_array.sum() <= 0:
            raise ValueError(
                f"Weights must be non-negative and have a positive sum, got {list(weights)}."
            )
        bounds = np.concatenate([[0.0], np.cumsum(weights_array / weights_array.sum())])
        bounds[-1] = 1.0
        draws = check_random_state(random_state).uniform(size=self.n_samples)
        return [
            self.subset(np.flatnonzero((draws >= lower) & (draws < upper)))
            for lower, upper in zip(bounds[:-1], bounds[1:])
        ]

    def get_local_subset(
        self, rank: int, n_ranks: int, min_partitions: int
    ) -> "LabeledDataset":
        """
        Partition the dataset and select the partitions assigned to this rank.

        The dataset is split into at least ``max(min_partitions, n_ranks)`` partitions, which are assigned to the
        ranks round-robin.

        Parameters
        ----------
        rank : int
            The rank to select the partitions for.
        n_ranks : int
            The overall number of ranks.
        min_partitions : int
            The minimum number of partitions.

        Returns
        -------
        LabeledDataset
            The records of all partitions assigned to ``rank``.
        """
        partitions = self.partition(max(min_partitions, n_ranks))
        local_partitions = partitions[rank::n_ranks]
        log.debug(
            f"[{rank}/{n_ranks}]: Assigned {len(local_partitions)} of {len(partitions)} partitions."
        )
        if not local_partitions:
            return self.subset(np.arange(0))
        return self.subset(np.concatenate(local_partitions))


def load_libsvm_file(
    path: str | pathlib.Path,
    n_features: int = -1,
    min_partitions: int = 10,
) -> LabeledDataset:
    """
    Load binary labeled records from a file in LIBSVM format.

    Each line holds one record ``label index1:value1 index2:value2 ...`` with one-based, ascending feature indices.
    Labels must be binary; -1 labels are mapped to 0.

    Parameters
    ----------
    path : str | pathlib.Path
        The path to the LIBSVM file.
    n_features : int
        The number of features. Default is -1 to infer it from the largest index in the file.
    min_partitions : int
        The minimum number of partitions the dataset will be split into. Only validated and logged here.

    Returns
    -------
    LabeledDataset
        The loaded records.
    """
    if min_partitions < 1:
        raise ValueError(f"The number of partitions must be positive, got {min_partitions}.")
    path = pathlib.Path(path)
    log.info(f"Loading LIBSVM data from {path} with at least {min_partitions} partitions.")
    x, y = load_svmlight_file(
        str(path),
        n_features=None if n_features < 0 else n_features,
        dtype=np.float64,
        zero_based=False,
    )
    labels = np.unique(y)
    if not set(labels.tolist()) <= {-1.0, 0.0, 1.0}:
        raise ValueError(
            f"Binary classification requires labels in {{0, 1}} (or {{-1, 1}}), found {labels.tolist()}."
        )
    y = np.where(y < 0, 0.0, y)
    dataset = LabeledDataset(x, y)
    log.info(f"Loaded {dataset}.")
    return dataset
