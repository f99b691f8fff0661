#!/usr/bin/env python
import logging
import pathlib
import sys
from typing import Sequence

from mpi4py import MPI

from sparkyrf.train import train_random_forest_on_libsvm
from sparkyrf.utils import get_training_kwargs, set_logger_config, usage
from sparkyrf.utils.args import ArgsCache

log = logging.getLogger("sparkyrf")  # Get logger instance.


def main(argv: Sequence[str] | None = None) -> int:
    """
    Run distributed random forest training on LIBSVM data, configured from the command line.

    Parameters
    ----------
    argv : Sequence[str], optional
        The command-line tokens without the program name. Default is ``sys.argv[1:]``.

    Returns
    -------
    int
        The exit status.
    """
    tokens = list(sys.argv[1:] if argv is None else argv)
    config = get_training_kwargs(tokens, ArgsCache())
    if config.pop("help"):
        print(usage())
        return 0

    log_path = config.pop("log_path")
    set_logger_config(
        level=config.pop("logging_level"),
        log_file=pathlib.Path(log_path) / "sparkyrf.log" if log_path else None,
        log_rank=config.pop("log_rank"),
        colors=config.pop("colors"),
    )
    comm = MPI.COMM_WORLD

    if comm.rank == 0:
        log.info(
            "*****************************\n"
            "* Distributed Random Forest *\n"
            "*****************************\n"
            f"Hyperparameters used are:\n{config}"
        )
    if not config["data_path"]:
        raise ValueError(f"No input data given, pass --trainlibsvm <path>.\n{usage()}")
    train_random_forest_on_libsvm(**config, comm=comm)
    return 0


if __name__ == "__main__":
    sys.exit(main())
