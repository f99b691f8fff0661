import datetime
import logging
import pathlib

import matplotlib.pyplot as plt
import numpy as np
import pandas
from mpi4py import MPI

from sparkyrf.utils import get_pickled_size, set_logger_config
from sparkyrf.utils.plot import plot_evaluation_curves, save_evaluation_curves
from sparkyrf.utils.result_handling import (
    construct_output_path,
    gather_results,
    get_output_path,
    save_dataframe,
)
from sparkyrf.utils.timing import MPITimer


def test_mpi_timer() -> None:
    """Test measuring and storing the elapsed time of a stage."""
    global_results: dict = {}
    local_results: dict = {}
    with MPITimer(MPI.COMM_SELF, name="data loading") as timer:
        sum(range(1000))
    timer.store(global_results, local_results)
    assert timer.result_key == "time_sec_data_loading"
    assert timer.elapsed_time_local >= 0.0
    assert global_results["time_sec_data_loading"] == timer.elapsed_time_average
    assert local_results["time_sec_data_loading"] == timer.elapsed_time_local


def test_output_path(tmp_path: pathlib.Path) -> None:
    """
    Test the date-based output directory and the base file name.

    Parameters
    ----------
    tmp_path : pathlib.Path
        The temporary base output directory.
    """
    today = datetime.date.today()
    path, base_filename = construct_output_path(tmp_path, "label", "experiment")
    assert path == tmp_path / str(today.year) / f"{today.year}-{today.month}" / str(today) / "experiment"
    assert path.is_dir()
    assert "-label-" in base_filename

    path, base_filename = get_output_path(MPI.COMM_SELF, tmp_path / "other")
    assert path.is_dir()
    assert path.name == str(today)
    assert base_filename.startswith(today.strftime("%Y-%m-%d"))


def test_gather_and_save_results(tmp_path: pathlib.Path) -> None:
    """
    Test combining rank-local results, global results, and configuration into one csv.

    Parameters
    ----------
    tmp_path : pathlib.Path
        The temporary directory to save the csv to.
    """
    results_df = gather_results(
        MPI.COMM_SELF,
        {"comm_rank": 0, "n_train": 10},
        {"comm_rank": "global", "area_under_roc": 0.9},
        {"n_trees": 5, "data_path": pathlib.Path("data.libsvm")},
    )
    assert results_df is not None
    assert len(results_df) == 2
    assert (results_df["n_trees"] == 5).all()
    output_file = save_dataframe(results_df, tmp_path / "results")
    assert output_file == tmp_path / "results.csv"
    loaded = pandas.read_csv(output_file)
    assert loaded["data_path"].tolist() == ["data.libsvm"] * 2
    assert loaded["area_under_roc"].iloc[1] == 0.9


def test_plot_evaluation_curves(tmp_path: pathlib.Path) -> None:
    """
    Test plotting and saving the ROC and precision-recall curves.

    Parameters
    ----------
    tmp_path : pathlib.Path
        The temporary directory to save the figure to.
    """
    roc = np.array([[0.0, 0.0], [0.0, 0.5], [0.5, 1.0], [1.0, 1.0]])
    pr = np.array([[0.0, 1.0], [0.5, 1.0], [1.0, 0.5]])
    fig, axes = plot_evaluation_curves(roc, pr, 0.875, 0.875, positive_fraction=0.5)
    assert len(axes) == 2
    assert "0.875" in axes[0].get_title()
    plt.close(fig)
    output_file = save_evaluation_curves(roc, pr, 0.875, 0.875, tmp_path / "curves.pdf")
    assert output_file.is_file()


def test_set_logger_config(tmp_path: pathlib.Path) -> None:
    """
    Test that reconfiguring the base logger replaces its handlers.

    Parameters
    ----------
    tmp_path : pathlib.Path
        The temporary directory to write the log file to.
    """
    log_file = tmp_path / "logs" / "sparkyrf.log"
    set_logger_config(level=logging.DEBUG, log_file=log_file, log_to_stdout=True, log_rank=True)
    set_logger_config(level=logging.DEBUG, log_file=log_file, log_to_stdout=True, colors=False)
    base_logger = logging.getLogger("sparkyrf")
    assert len(base_logger.handlers) == 2
    assert base_logger.level == logging.DEBUG
    logging.getLogger("sparkyrf.test").info("Logged to file.")
    for handler in base_logger.handlers:
        handler.flush()
    assert "Logged to file." in log_file.read_text()
    set_logger_config(level=logging.INFO)


def test_get_pickled_size() -> None:
    """Test that larger objects have larger pickled sizes."""
    assert get_pickled_size(np.zeros(1000)) > get_pickled_size(np.zeros(10)) > 0
