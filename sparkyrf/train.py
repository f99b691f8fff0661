import logging
import os
import pathlib
from typing import Any

import numpy as np
from mpi4py import MPI
from sklearn.utils.validation import check_random_state

from sparkyrf.evaluation_metrics import BinaryClassificationMetrics
from sparkyrf.libsvm import LabeledDataset, load_libsvm_file
from sparkyrf.model_io import save_model
from sparkyrf.rf_parallel import SCORE_MODES, DistributedRandomForest, RandomForestModel
from sparkyrf.utils.plot import save_evaluation_curves
from sparkyrf.utils.result_handling import gather_results, get_output_path, save_dataframe
from sparkyrf.utils.timing import MPITimer

log = logging.getLogger(__name__)  # Get logger instance.


def format_pairs(curve: np.ndarray) -> str:
    """
    Format an array of (x, y) points as a list of tuples, e.g., '[(0.9, 1.0), (0.5, 0.75)]'.

    Parameters
    ----------
    curve : np.ndarray
        The (n, 2) array of points.

    Returns
    -------
    str
        The formatted points.
    """
    return "[" + ", ".join(f"({float(x)!r}, {float(y)!r})" for x, y in curve) + "]"


def print_evaluation_report(
    metrics: BinaryClassificationMetrics, model: RandomForestModel
) -> None:
    """
    Print the evaluation curves, the areas under them, and the learned model to stdout.

    Parameters
    ----------
    metrics : BinaryClassificationMetrics
        The metrics of the evaluation set.
    model : RandomForestModel
        The trained model.
    """
    report = [
        f"Precision by threshold: {format_pairs(metrics.precision_by_threshold())}",
        f"Recall by threshold: {format_pairs(metrics.recall_by_threshold())}",
        f"F1 Score by threshold: {format_pairs(metrics.f_measure_by_threshold())}",
        f"F2 Score by threshold: {format_pairs(metrics.f_measure_by_threshold(beta=2.0))}",
        f"Precision-recall curve: {format_pairs(metrics.pr())}",
        f"ROC curve: {format_pairs(metrics.roc())}",
        f"Area under precision-recall curve = {metrics.area_under_pr()}",
        f"Area under ROC = {metrics.area_under_roc()}",
        f"Learned classification forest model:\n{model.to_debug_string()}",
    ]
    print("\n".join(report), flush=True)


def check_model_path(
    comm: MPI.Comm, model_out_name: str | pathlib.Path, overwrite: bool
) -> None:
    """
    Fail early on all ranks if the model directory already exists and may not be overwritten.

    Parameters
    ----------
    comm : MPI.Comm
        The MPI communicator.
    model_out_name : str | pathlib.Path
        The model output directory.
    overwrite : bool
        Whether an existing model directory may be replaced.
    """
    exists = pathlib.Path(model_out_name).exists() if comm.rank == 0 else None
    if comm.bcast(exists, root=0) and not overwrite:
        raise FileExistsError(
            f"Model path {model_out_name} already exists, pass `overwrite` to replace it."
        )


def train_random_forest_on_libsvm(
    data_path: str | pathlib.Path,
    n_features: int = -1,
    min_partitions: int = 10,
    train_frac: float = 0.7,
    split_seed: int | None = None,
    n_trees: int = 100,
    max_depth: int = 5,
    max_bins: int = 32,
    feature_subset_strategy: str = "auto",
    subsampling_rate: float | None = None,
    random_state_model: int = 12345,
    score_mode: str = "vote",
    num_bins: int = 100,
    model_out_name: str | pathlib.Path = "RFmod",
    overwrite: bool = False,
    output_dir: str | pathlib.Path = "",
    output_label: str = "",
    experiment_id: str = "",
    node_local_jobs: int = -1,
    comm: MPI.Comm = MPI.COMM_WORLD,
) -> dict[str, Any]:
    """
    Train and evaluate a distributed random forest binary classifier on LIBSVM data and save the model.

    Every rank loads the full dataset and splits it randomly into a train and an evaluation set with a common seed.
    The train set is partitioned and each rank trains a subforest on its partitions. The subforests are all-gathered
    into a shared global model, which scores the evaluation set. Rank 0 prints the evaluation curves, the areas under
    them, and the model, and saves the model to ``model_out_name``.

    Parameters
    ----------
    data_path : str | pathlib.Path
        The path to the LIBSVM file.
    n_features : int
        The number of features. Default is -1 to infer it from the data.
    min_partitions : int
        The minimum number of partitions of the train set.
    train_frac : float
        The fraction of records used for training, in (0, 1). The remainder is used for evaluation.
    split_seed : int, optional
        The seed of the random train-test split. If None, it is drawn on rank 0 and broadcast.
    n_trees : int
        The number of trees in the global forest.
    max_depth : int
        The maximum depth of each tree.
    max_bins : int
        The maximum number of bins for continuous features.
    feature_subset_strategy : str
        The number of features considered per split, see ``sparkyrf.rf_parallel.resolve_feature_subset_strategy``.
    subsampling_rate : float, optional
        The fraction of the local train set each tree is trained on. Default is 1 / n_trees.
    random_state_model : int
        The base seed of the model.
    score_mode : str
        "vote" to score by the fraction of trees predicting the positive class, "probability" to average the trees'
        class-1 probabilities.
    num_bins : int
        The number of bins the evaluation curves are down-sampled to, 0 for no down-sampling.
    model_out_name : str | pathlib.Path
        The directory to save the model to.
    overwrite : bool
        Whether to replace an existing model directory.
    output_dir : str | pathlib.Path
        If given, the results csv and the curve plots are written to
        output_dir / year / year-month / date / YYYY-mm-dd--HH-MM-SS-<output_label>-<uuid>.
    output_label : str
        Optional label added to the output file names after the timestamp.
    experiment_id : str
        Optional subdirectory of the date directory to group the runs of an experiment in.
    node_local_jobs : int
        The number of jobs to train the rank-local subforest with. Default is -1 to use all cores.
    comm : MPI.Comm
        The MPI communicator to distribute over.

    Returns
    -------
    dict[str, Any]
        The global results, i.e., areas under the curves, test accuracy, dataset sizes, and timings.
    """
    if not 0.0 < train_frac < 1.0:
        raise ValueError(f"The train fraction must be in (0, 1), got {train_frac}.")
    if score_mode not in SCORE_MODES:
        raise ValueError(f"Invalid score mode {score_mode!r}. Supported are {SCORE_MODES}.")
    if num_bins < 0:
        raise ValueError(f"The number of bins must be non-negative, got {num_bins}.")
    if subsampling_rate is None:
        subsampling_rate = 1.0 / n_trees if n_trees > 0 else 1.0
    check_model_path(comm, model_out_name, overwrite)

    # Get all arguments passed to the function as dict, captures all variables in the current local scope so this needs
    # to be called before defining any other local variables.
    configuration = locals()
    for key in ["comm", "output_dir"]:
        del configuration[key]
    configuration["comm_size"] = comm.size

    global_results: dict[str, Any] = {
        "comm_rank": "global",
        "job_id": int(os.getenv("SLURM_JOB_ID", default=0)),
    }
    local_results: dict[str, Any] = {"comm_rank": comm.rank}

    # The split must be the same on all ranks, so a missing seed is drawn once and shared.
    if split_seed is None:
        split_seed = (
            check_random_state(None).randint(0, np.iinfo(np.int32).max)
            if comm.rank == 0
            else None
        )
        split_seed = comm.bcast(split_seed, root=0)
        if comm.rank == 0:
            log.info(f"Generated split seed is {split_seed}.")
    configuration["split_seed"] = split_seed

    # -------------- Load and split data --------------
    with MPITimer(comm, name="data loading") as timer:
        dataset = load_libsvm_file(data_path, n_features, min_partitions)
        train_data, test_data = dataset.random_split(
            [train_frac, 1.0 - train_frac], random_state=split_seed % 2**32
        )
    timer.store(global_results, local_results)
    if len(train_data) == 0 or len(test_data) == 0:
        raise ValueError(
            f"Splitting {len(dataset)} records with train fraction {train_frac} gave {len(train_data)} train and "
            f"{len(test_data)} evaluation records, both must be non-empty."
        )
    local_train: LabeledDataset = train_data.get_local_subset(
        comm.rank, comm.size, min_partitions
    )
    # All ranks must fail together, otherwise the others block in the collectives below.
    n_empty_ranks = comm.allreduce(int(len(local_train) == 0), op=MPI.SUM)
    if n_empty_ranks > 0:
        raise ValueError(
            f"{n_empty_ranks} of {comm.size} ranks got no training records from {len(train_data)} train records, "
            "use fewer ranks or more data."
        )
    global_results["n_train"] = len(train_data)
    global_results["n_test"] = len(test_data)
    local_results["n_train"] = len(local_train)
    log.info(
        f"[{comm.rank}/{comm.size}]: Done...\n"
        f"Train set: {train_data}\nEvaluation set: {test_data}\n"
        f"Local train samples and targets have shapes {local_train.x.shape} and {local_train.y.shape}."
    )

    # -------------- Set up and train distributed random forest --------------
    with MPITimer(comm, name="forest creation") as timer:
        distributed_random_forest = DistributedRandomForest(
            n_trees_global=n_trees,
            comm=comm,
            random_state=random_state_model,
            max_depth=max_depth,
            impurity="gini",
            feature_subset_strategy=feature_subset_strategy,
            max_bins=max_bins,
            subsampling_rate=subsampling_rate,
            categorical_features_info={},
            node_local_jobs=node_local_jobs,
        )
    timer.store(global_results, local_results)

    with MPITimer(comm, name="training") as timer:
        distributed_random_forest.train(local_train.x, local_train.y)
    timer.store(global_results, local_results)

    # -------------- Build shared global model --------------
    with MPITimer(comm, name="all-gathering model") as timer:
        model = distributed_random_forest.build_shared_global_model()
    timer.store(global_results, local_results)

    # -------------- Evaluate random forest --------------
    log.info(
        f"[{comm.rank}/{comm.size}]: Evaluate random forest on {len(test_data)} evaluation samples."
    )
    with MPITimer(comm, name="test") as timer:
        scores = distributed_random_forest.predict_positive_score(test_data.x, score_mode)
        metrics = BinaryClassificationMetrics(scores, test_data.y, num_bins)
    timer.store(global_results, local_results)
    global_results["area_under_pr"] = metrics.area_under_pr()
    global_results["area_under_roc"] = metrics.area_under_roc()
    global_results["accuracy_test"] = float(((scores > 0.5) == (test_data.y > 0.5)).mean())
    if comm.rank == 0:
        log.info(
            f"Area under PR: {global_results['area_under_pr']}, area under ROC: {global_results['area_under_roc']}, "
            f"test accuracy: {global_results['accuracy_test']}"
        )
        print_evaluation_report(metrics, model)

    # -------------- Save model --------------
    if comm.rank == 0:
        save_model(model, model_out_name, overwrite=overwrite)

    # -------------- Gather local results, generate dataframe, output collective results --------------
    if output_dir:
        output_path, base_filename = get_output_path(
            comm, output_dir, output_label, experiment_id
        )
        results_df = gather_results(comm, local_results, global_results, configuration)
        if comm.rank == 0:
            save_dataframe(results_df, output_path / (base_filename + "_results.csv"))
            save_evaluation_curves(
                metrics.roc(),
                metrics.pr(),
                global_results["area_under_roc"],
                global_results["area_under_pr"],
                output_path / (base_filename + "_curves.pdf"),
                positive_fraction=float(test_data.y.mean()),
            )
    return global_results
