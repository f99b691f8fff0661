import logging
import re
from typing import Any

import joblib
import numpy as np
import scipy.sparse
import sklearn.tree
from mpi4py import MPI
from sklearn.ensemble import RandomForestClassifier
from sklearn.utils.validation import check_random_state

from sparkyrf.utils import get_pickled_size

log = logging.getLogger(__name__)  # Get logger instance.
"""Logger."""

IMPURITIES = ("gini", "entropy")
SCORE_MODES = ("vote", "probability")
FEATURE_SUBSET_STRATEGIES = ("auto", "all", "sqrt", "log2", "onethird")


def resolve_feature_subset_strategy(
    strategy: str, n_trees: int
) -> str | float | int | None:
    """
    Translate a feature subset strategy into the ``max_features`` argument of scikit-learn trees.

    Supported strategies are "auto" ("sqrt" for forests with more than one tree, "all" otherwise), "all", "sqrt",
    "log2", "onethird", a fraction in (0, 1] such as "0.5", or a positive integer count such as "10".

    Parameters
    ----------
    strategy : str
        The feature subset strategy.
    n_trees : int
        The number of trees in the global forest.

    Returns
    -------
    str | float | int | None
        The corresponding ``max_features`` value, None means all features.
    """
    strategy = strategy.lower()
    if strategy == "auto":
        strategy = "sqrt" if n_trees > 1 else "all"
    if strategy == "all":
        return None
    if strategy in ("sqrt", "log2"):
        return strategy
    if strategy == "onethird":
        return 1.0 / 3.0
    if re.fullmatch(r"[1-9][0-9]*", strategy):
        return int(strategy)
    try:
        fraction = float(strategy)
    except ValueError:
        fraction = np.nan
    if 0.0 < fraction <= 1.0:
        return fraction
    raise ValueError(
        f"Invalid feature subset strategy {strategy!r}. Supported are {FEATURE_SUBSET_STRATEGIES}, "
        "a fraction in (0, 1], or a positive integer."
    )


class RandomForestModel:
    """
    Trained random forest for binary classification, made up of the trees of all ranks.

    Each tree is stored together with the labels its class indices refer to, as rank-local subforests trained on
    differing partitions may know different labels.

    Attributes
    ----------
    strategy : dict[str, Any]
        The training configuration, e.g., impurity, maximum depth, and seed.
    tree_labels : list[numpy.ndarray]
        For each tree, the labels corresponding to its class indices.
    trees : list[sklearn.tree.DecisionTreeClassifier]
        The trees of the forest.
    """

    def __init__(
        self,
        trees: list[sklearn.tree.DecisionTreeClassifier],
        tree_labels: list[np.ndarray],
        strategy: dict[str, Any] | None = None,
    ) -> None:
        """
        Create a model from trained trees.

        Parameters
        ----------
        trees : list[sklearn.tree.DecisionTreeClassifier]
            The trees of the forest.
        tree_labels : list[numpy.ndarray]
            For each tree, the labels corresponding to its class indices.
        strategy : dict[str, Any], optional
            The training configuration.
        """
        if len(trees) != len(tree_labels):
            raise ValueError(
                f"Got {len(trees)} trees but labels for {len(tree_labels)} trees."
            )
        self.trees = trees
        self.tree_labels = [np.asarray(labels, dtype=np.float64) for labels in tree_labels]
        self.strategy = {} if strategy is None else dict(strategy)

    @property
    def n_trees(self) -> int:
        """The number of trees in the forest."""
        return len(self.trees)

    @staticmethod
    def tree_output(
        tree: sklearn.tree.DecisionTreeClassifier,
        labels: np.ndarray,
        samples: scipy.sparse.csr_matrix | np.ndarray,
        mode: str = "vote",
    ) -> np.ndarray:
        """
        Compute one tree's output for the positive class.

        Parameters
        ----------
        tree : sklearn.tree.DecisionTreeClassifier
            The tree.
        labels : numpy.ndarray
            The labels corresponding to the tree's class indices.
        samples : scipy.sparse.csr_matrix | numpy.ndarray
            The samples to predict.
        mode : str
            "vote" for the tree's predicted label (0 or 1), "probability" for its class-1 probability.

        Returns
        -------
        numpy.ndarray
            The tree output for each sample.
        """
        if mode == "vote":
            return labels[tree.predict(samples).astype(int)]
        if mode == "probability":
            positive = np.flatnonzero(labels[tree.classes_.astype(int)] == 1.0)
            if len(positive) == 0:
                return np.zeros(samples.shape[0])
            return tree.predict_proba(samples)[:, positive[0]]
        raise ValueError(f"Invalid score mode {mode!r}. Supported are {SCORE_MODES}.")

    def sum_tree_outputs(
        self, samples: scipy.sparse.csr_matrix | np.ndarray, mode: str = "vote"
    ) -> np.ndarray:
        """
        Sum the positive-class outputs of all trees for each sample.

        Parameters
        ----------
        samples : scipy.sparse.csr_matrix | numpy.ndarray
            The samples to predict.
        mode : str
            "vote" or "probability", see ``tree_output``.

        Returns
        -------
        numpy.ndarray
            The summed tree outputs for each sample.
        """
        # Convert once instead of in every tree's input validation.
        if scipy.sparse.issparse(samples):
            samples = scipy.sparse.csr_matrix(samples, dtype=np.float32)
        else:
            samples = np.asarray(samples, dtype=np.float32)
        total = np.zeros(samples.shape[0], dtype=np.float64)
        for tree, labels in zip(self.trees, self.tree_labels):
            total += self.tree_output(tree, labels, samples, mode)
        return total

    def predict_positive_score(
        self, samples: scipy.sparse.csr_matrix | np.ndarray, mode: str = "vote"
    ) -> np.ndarray:
        """
        Average the positive-class outputs over all trees.

        In "vote" mode, this is the fraction of trees predicting the positive class.

        Parameters
        ----------
        samples : scipy.sparse.csr_matrix | numpy.ndarray
            The samples to score.
        mode : str
            "vote" or "probability", see ``tree_output``.

        Returns
        -------
        numpy.ndarray
            The score in [0, 1] for each sample.
        """
        return self.sum_tree_outputs(samples, mode) / self.n_trees

    def predict(
        self,
        samples: scipy.sparse.csr_matrix | np.ndarray,
        mode: str = "vote",
        threshold: float = 0.5,
    ) -> np.ndarray:
        """
        Predict labels, i.e., 1 where the averaged score exceeds the threshold and 0 elsewhere.

        Parameters
        ----------
        samples : scipy.sparse.csr_matrix | numpy.ndarray
            The samples to predict.
        mode : str
            "vote" or "probability", see ``tree_output``.
        threshold : float
            The decision threshold.

        Returns
        -------
        numpy.ndarray
            The predicted labels.
        """
        return (self.predict_positive_score(samples, mode) > threshold).astype(np.float64)

    def to_debug_string(self) -> str:
        """
        Render the full model, i.e., every tree's decision rules.

        Returns
        -------
        str
            The model description.
        """
        lines = [f"TreeEnsembleModel classifier with {self.n_trees} trees", ""]
        for i, (tree, labels) in enumerate(zip(self.trees, self.tree_labels)):
            rules = sklearn.tree.export_text(
                tree,
                feature_names=[f"feature {j}" for j in range(tree.n_features_in_)],
                max_depth=max(tree.get_depth(), 1),
                class_names=[f"{label:g}" for label in labels[tree.classes_.astype(int)]],
            )
            lines.append(f"  Tree {i}:")
            lines.extend(f"    {line}" for line in rules.splitlines())
        return "\n".join(lines)


class DistributedRandomForest:
    """
    Distributed random forest class.

    Each rank trains a subforest on its local partition of the training data. The subforests can be all-gathered into
    a shared global model; otherwise, tree outputs are all-reduced across ranks at prediction time.

    Attributes
    ----------
    comm : MPI.Comm
        The MPI communicator.
    feature_subset_strategy : str
        The feature subset strategy, see ``resolve_feature_subset_strategy``.
    global_model : RandomForestModel | None
        The shared global model, only after ``build_shared_global_model``.
    impurity : str
        The split criterion, "gini" or "entropy".
    local_clf : sklearn.ensemble.RandomForestClassifier
        The rank-local random forest classifier.
    max_bins : int
        The maximum number of bins for continuous features. Recorded in the strategy; scikit-learn considers all
        thresholds.
    max_depth : int
        The maximum depth of each tree.
    n_trees_base : int
        The base number of rank-local trees.
    n_trees_global : int
        The number of trees in the global random forest model.
    n_trees_local : int
        The final number of rank-local trees.
    n_trees_remainder : int
        The remaining number of trees to distribute.
    random_state : np.random.RandomState | None
        The rank-local random state of the local random forest classifier.
    subsampling_rate : float
        The fraction of the local training data each tree is trained on (bootstrap).

    Methods
    -------
    train()
        Train the rank-local subforest.
    build_shared_global_model()
        All-gather all subforests into a shared global model.
    predict_positive_score()
        Average the positive-class tree outputs over the global forest.
    predict()
        Predict labels with the global forest.
    """

    def __init__(
        self,
        n_trees_global: int,
        comm: MPI.Comm,
        random_state: int | None = None,
        max_depth: int = 5,
        impurity: str = "gini",
        feature_subset_strategy: str = "auto",
        max_bins: int = 32,
        subsampling_rate: float = 1.0,
        categorical_features_info: dict[int, int] | None = None,
        node_local_jobs: int = -1,
    ) -> None:
        """
        Initialize a distributed random forest object.

        Parameters
        ----------
        n_trees_global : int
            The number of trees in the global forest.
        comm : MPI.Comm
            The MPI communicator to use.
        random_state : int, optional
            The base random state. A ``RandomState`` seeded with it draws one seed per rank for the rank-local
            classifiers, so every subforest is different.
        max_depth : int
            The maximum depth of each tree.
        impurity : str
            The split criterion, "gini" or "entropy".
        feature_subset_strategy : str
            The number of features considered per split, see ``resolve_feature_subset_strategy``.
        max_bins : int
            The maximum number of bins for continuous features, at least 2.
        subsampling_rate : float
            The fraction of the local training data each tree is trained on, in (0, 1].
        categorical_features_info : dict[int, int], optional
            Maps categorical feature indices to their arity. Must be empty, i.e., all features are continuous.
        node_local_jobs : int
            The number of jobs to train the local classifier with, passed as n_jobs. Default is -1 to use all cores.
        """
        if n_trees_global < 1:
            raise ValueError(f"The number of trees must be positive, got {n_trees_global}.")
        if max_depth < 1:
            raise ValueError(f"The maximum depth must be positive, got {max_depth}.")
        if impurity not in IMPURITIES:
            raise ValueError(f"Invalid impurity {impurity!r}. Supported are {IMPURITIES}.")
        if max_bins < 2:
            raise ValueError(f"The maximum number of bins must be at least 2, got {max_bins}.")
        if not 0.0 < subsampling_rate <= 1.0:
            raise ValueError(f"The subsampling rate must be in (0, 1], got {subsampling_rate}.")
        if categorical_features_info:
            raise NotImplementedError(
                "Categorical features are not supported, all features are treated as continuous."
            )
        self.comm = comm
        self.node_local_jobs = node_local_jobs
        self.n_trees_global = n_trees_global
        self.max_depth = max_depth
        self.impurity = impurity
        self.feature_subset_strategy = feature_subset_strategy
        self.max_features = resolve_feature_subset_strategy(
            feature_subset_strategy, n_trees_global
        )
        self.max_bins = max_bins
        self.subsampling_rate = subsampling_rate
        self.base_seed = random_state
        # Distribute trees over available ranks in a load-balanced fashion.
        (
            self.n_trees_base,
            self.n_trees_remainder,
            self.n_trees_local,
        ) = self._distribute_trees()
        if random_state is not None:
            # The base seed gives the same sequence of per-rank seeds on every rank; each rank takes its own.
            local_seeds = check_random_state(random_state).randint(
                low=0, high=2**32 - 1, size=self.comm.size
            )
            local_seed = local_seeds[self.comm.rank]
            log.info(
                f"[{self.comm.rank}/{self.comm.size}] Use {local_seed} to seed the rank-local `RandomState` instance."
            )
            self.random_state = check_random_state(local_seed)
        else:
            self.random_state = None

        self.local_clf: RandomForestClassifier | None = None
        self.global_model: RandomForestModel | None = None

    @property
    def strategy(self) -> dict[str, Any]:
        """The training configuration stored with the model."""
        return {
            "algo": "classification",
            "num_classes": 2,
            "impurity": self.impurity,
            "max_depth": self.max_depth,
            "feature_subset_strategy": self.feature_subset_strategy,
            "max_bins": self.max_bins,
            "subsampling_rate": self.subsampling_rate,
            "categorical_features_info": {},
            "seed": self.base_seed,
            "n_trees": self.n_trees_global,
        }

    def _distribute_trees(self) -> tuple[int, int, int]:
        """
        Distribute trees evenly over all ranks.

        Returns
        -------
        int
            The base number of rank-local trees.
        int
            The remaining number of trees to distribute.
        int
            The final number of rank-local trees.
        """
        size, rank = self.comm.size, self.comm.rank
        if self.n_trees_global < size:
            raise ValueError(
                f"Cannot distribute {self.n_trees_global} trees over {size} ranks, every rank needs at least one tree."
            )
        n_trees_base = self.n_trees_global // size
        n_trees_remainder = self.n_trees_global % size
        n_trees_local = n_trees_base + 1 if rank < n_trees_remainder else n_trees_base
        return n_trees_base, n_trees_remainder, n_trees_local

    def _train_local_classifier(
        self,
        train_samples: scipy.sparse.csr_matrix | np.ndarray,
        train_targets: np.ndarray,
    ) -> RandomForestClassifier:
        """
        Train the rank-local random forest classifier.

        Parameters
        ----------
        train_samples : scipy.sparse.csr_matrix | numpy.ndarray
            The samples of the local train partition.
        train_targets : numpy.ndarray
            The targets of the local train partition.

        Returns
        -------
        sklearn.ensemble.RandomForestClassifier
            The trained model.
        """
        max_features = self.max_features
        if isinstance(max_features, int):
            max_features = min(max_features, train_samples.shape[1])
        clf = RandomForestClassifier(
            n_estimators=self.n_trees_local,
            criterion=self.impurity,
            max_depth=self.max_depth,
            max_features=max_features,
            bootstrap=True,
            max_samples=None if self.subsampling_rate == 1.0 else self.subsampling_rate,
            random_state=self.random_state,
            n_jobs=self.node_local_jobs,
        )
        expected_n_jobs = 1 if clf.n_jobs is None else clf.n_jobs
        if expected_n_jobs < 0:
            expected_n_jobs = joblib.cpu_count() + 1 + expected_n_jobs
        log.info(f"Training local random forest with {expected_n_jobs} jobs.")
        clf.fit(train_samples, train_targets)
        return clf

    def train(
        self,
        train_samples: scipy.sparse.csr_matrix | np.ndarray,
        train_targets: np.ndarray,
    ) -> None:
        """
        Train the rank-local subforest.

        Parameters
        ----------
        train_samples : scipy.sparse.csr_matrix | numpy.ndarray
            The rank-local train samples.
        train_targets : numpy.ndarray
            The corresponding train targets.
        """
        rank, size = self.comm.rank, self.comm.size
        if len(train_targets) == 0:
            raise ValueError(f"[{rank}/{size}]: The local training partition is empty.")
        log.info(
            f"[{rank}/{size}]: Set up and train rank-local random forest with {self.n_trees_local} trees "
            f"on {len(train_targets)} samples."
        )
        self.local_clf = self._train_local_classifier(train_samples, train_targets)
        self.global_model = None

    @property
    def local_model(self) -> RandomForestModel:
        """The rank-local subforest as ``RandomForestModel``."""
        if self.local_clf is None:
            raise RuntimeError("The distributed random forest has not been trained yet.")
        labels = self.local_clf.classes_
        return RandomForestModel(
            list(self.local_clf.estimators_),
            [labels] * len(self.local_clf.estimators_),
            self.strategy,
        )

    @property
    def model(self) -> RandomForestModel:
        """The shared global model, only available after ``build_shared_global_model``."""
        if self.global_model is None:
            raise RuntimeError(
                "No shared global model, call `build_shared_global_model` after training."
            )
        return self.global_model

    def _allgather_subforests_tree_by_tree(
        self,
    ) -> list[tuple[sklearn.tree.DecisionTreeClassifier, np.ndarray]]:
        """
        All-gather the rank-local subforests tree by tree so that each rank finally holds the complete global model.

        Returns
        -------
        list[tuple[sklearn.tree.DecisionTreeClassifier, numpy.ndarray]]
            All trees of the global model, each with its labels.
        """
        rank = self.comm.rank
        local_model = self.local_model
        local_trees = list(zip(local_model.trees, local_model.tree_labels))
        trees = []
        total_message_size = 0
        log.debug(
            f"[{rank}/{self.comm.size}] All-gathering subforests with {self.n_trees_base=}"
        )
        for t in range(self.n_trees_base):
            total_message_size += get_pickled_size(local_trees[t])
            trees.extend(self.comm.allgather(local_trees[t]))

        # Ranks below the remainder hold one extra tree, broadcast from its owner.
        for r in range(self.n_trees_remainder):
            tree = local_trees[-1] if rank == r else None
            total_message_size += get_pickled_size(tree) if tree is not None else 0
            trees.append(self.comm.bcast(tree, root=r))

        log.info(
            f"All-gather subforests: total message size sent from {rank=} is {total_message_size} bytes."
        )
        return trees

    def build_shared_global_model(self) -> RandomForestModel:
        """
        Build the shared global random forest model from all rank-local subforests.

        Returns
        -------
        RandomForestModel
            The global model, identical on all ranks.
        """
        rank, size = self.comm.rank, self.comm.size
        log.info(
            f"[{rank}/{size}]: Sync global forest by all-gathering local forests tree by tree."
        )
        trees = self._allgather_subforests_tree_by_tree()
        self.global_model = RandomForestModel(
            [tree for tree, _ in trees], [labels for _, labels in trees], self.strategy
        )
        log.info(f"[{rank}/{size}]: {self.global_model.n_trees} trees in global forest.")
        return self.global_model

    def predict_positive_score(
        self, samples: scipy.sparse.csr_matrix | np.ndarray, mode: str = "vote"
    ) -> np.ndarray:
        """
        Average the positive-class tree outputs over all trees of the global forest.

        With a shared global model, the average is computed locally. Otherwise, the rank-local sums are all-reduced,
        which requires the same samples on all ranks.

        Parameters
        ----------
        samples : scipy.sparse.csr_matrix | numpy.ndarray
            The samples to score.
        mode : str
            "vote" to average hard tree predictions, "probability" to average the trees' class-1 probabilities.

        Returns
        -------
        numpy.ndarray
            The score in [0, 1] for each sample.
        """
        if mode not in SCORE_MODES:
            raise ValueError(f"Invalid score mode {mode!r}. Supported are {SCORE_MODES}.")
        if self.global_model is not None:
            return self.global_model.predict_positive_score(samples, mode)
        local_sum = self.local_model.sum_tree_outputs(samples, mode)
        global_sum = np.zeros_like(local_sum)
        self.comm.Allreduce(local_sum, global_sum, op=MPI.SUM)
        log.debug(
            f"All-reduce tree outputs: message size sent from rank {self.comm.rank} is "
            f"{get_pickled_size(local_sum)} bytes."
        )
        return global_sum / self.n_trees_global

    def predict(
        self,
        samples: scipy.sparse.csr_matrix | np.ndarray,
        mode: str = "vote",
        threshold: float = 0.5,
    ) -> np.ndarray:
        """
        Predict labels with the global forest, i.e., 1 where the averaged score exceeds the threshold.

        Parameters
        ----------
        samples : scipy.sparse.csr_matrix | numpy.ndarray
            The samples to predict.
        mode : str
            "vote" or "probability", see ``predict_positive_score``.
        threshold : float
            The decision threshold.

        Returns
        -------
        numpy.ndarray
            The predicted labels.
        """
        return (self.predict_positive_score(samples, mode) > threshold).astype(np.float64)

    def score(
        self,
        samples: scipy.sparse.csr_matrix | np.ndarray,
        targets: np.ndarray,
        mode: str = "vote",
    ) -> float:
        """
        Compute the global model's accuracy on the given samples, akin to sklearn .score().

        Parameters
        ----------
        samples : scipy.sparse.csr_matrix | numpy.ndarray
            The samples to predict the classes for.
        targets : numpy.ndarray
            The corresponding targets.
        mode : str
            "vote" or "probability", see ``predict_positive_score``.

        Returns
        -------
        float
            The mean accuracy over the given samples.
        """
        predictions = self.predict(samples, mode)
        return float((predictions == targets).mean())
