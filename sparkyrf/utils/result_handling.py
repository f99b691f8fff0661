import datetime
import logging
import pathlib
import uuid
from typing import Any

import pandas
from mpi4py import MPI

log = logging.getLogger(__name__)  # Get logger instance.


def construct_output_path(
    output_path: pathlib.Path | str = ".",
    output_name: str = "",
    experiment_id: str = "",
    mkdir: bool = True,
) -> tuple[pathlib.Path, str]:
    """
    Construct the directory and base file name to save run results to, based on the current date and time.

    The directory is 'output_path / year / year-month / YYYY-mm-dd', optionally followed by '/ experiment_id'. The
    base file name is 'YYYY-mm-dd--HH-MM-SS-<output_name>-<uuid>'.

    Parameters
    ----------
    output_path : pathlib.Path | str
        The base output directory to create the date-based directory tree in.
    output_name : str
        Optional label added to the file name after the timestamp. Default is an empty string.
    experiment_id : str
        Optional subdirectory to group multiple runs of an experiment in. Default is an empty string.
    mkdir : bool
        Whether to create all directories on the output path. Default is True.

    Returns
    -------
    pathlib.Path
        The path to the output directory.
    str
        The base file name.
    """
    today = datetime.datetime.today()
    path = (
        pathlib.Path(output_path)
        / str(today.year)
        / f"{today.year}-{today.month}"
        / str(today.date())
    )
    if experiment_id != "":
        path /= experiment_id
    if mkdir:
        path.mkdir(parents=True, exist_ok=True)
    base_filename = (
        f"{today.strftime('%Y-%m-%d--%H-%M-%S')}-{output_name}-{str(uuid.uuid4())[:8]}"
    )
    return path, base_filename


def get_output_path(
    comm: MPI.Comm,
    output_dir: str | pathlib.Path,
    output_label: str = "",
    experiment_id: str = "",
) -> tuple[pathlib.Path, str]:
    """
    Create the output directory on rank 0 and broadcast directory and base file name to all ranks.

    Parameters
    ----------
    comm : MPI.Comm
        The MPI communicator.
    output_dir : str | pathlib.Path
        The root output directory.
    output_label : str
        Optional label added to the file name after the timestamp.
    experiment_id : str
        Optional subdirectory to group multiple runs of an experiment in.

    Returns
    -------
    pathlib.Path
        The full output directory path.
    str
        The global base file name for this run.
    """
    # Only root creates the path, otherwise each rank would draw its own UUID.
    if comm.rank == 0:
        path, base_filename = construct_output_path(
            output_dir, output_label, experiment_id
        )
    else:
        path, base_filename = pathlib.Path(""), ""
    return pathlib.Path(comm.bcast(path, root=0)), comm.bcast(base_filename, root=0)


def save_dataframe(
    dataframe: pandas.DataFrame, output_path: pathlib.Path | str
) -> pathlib.Path:
    """
    Save the given dataframe as csv to ``output_path``, appending the '.csv' suffix if missing.

    Parameters
    ----------
    dataframe : pandas.DataFrame
        The dataframe to save as csv.
    output_path : pathlib.Path | str
        The path to save the dataframe to.

    Returns
    -------
    pathlib.Path
        The path the csv was written to.
    """
    output_path = pathlib.Path(output_path)
    if output_path.suffix != ".csv":
        output_path = output_path.parent / (output_path.name + ".csv")
    log.info(f"Saving results to {output_path.absolute()}")
    dataframe["result_filename"] = output_path
    dataframe.to_csv(output_path, index=False)
    return output_path


def gather_results(
    comm: MPI.Comm,
    local_results: dict[str, Any],
    global_results: dict[str, Any],
    configuration: dict[str, Any],
) -> pandas.DataFrame | None:
    """
    Gather the rank-local results on rank 0 and combine them with the global results and configuration.

    Parameters
    ----------
    comm : MPI.Comm
        The MPI communicator to use.
    local_results : dict[str, Any]
        Each rank's local results.
    global_results : dict[str, Any]
        The global results.
    configuration : dict[str, Any]
        The run configuration, added as constant columns.

    Returns
    -------
    pandas.DataFrame | None
        One row per rank plus one global row on rank 0, None on all other ranks.
    """
    gathered_local_results = comm.gather(local_results, root=0)
    if comm.rank != 0:
        return None
    results_df = pandas.DataFrame(gathered_local_results + [global_results])
    for key, value in configuration.items():  # Add configuration as columns.
        results_df[key] = str(value) if isinstance(value, pathlib.Path) else value
    return results_df
