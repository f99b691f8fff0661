import io
import logging
import pathlib
import pickle
import sys
import typing

import colorlog
from mpi4py import MPI

from .parse_cli_args import get_training_kwargs, usage  # noqa: F401

log = logging.getLogger(__name__)  # Get logger instance.


def get_pickled_size(x: object, **kwargs: typing.Any) -> int:
    """
    Get the size in bytes of the given object x after pickling.

    This is used to report the message size of trees and score arrays sent via MPI.

    Parameters
    ----------
    x : object
        The object whose size to get.
    kwargs : Any
        Additional keywords passed through to pickle.dump.

    Returns
    -------
    int
        The size of the object x (after pickling) in bytes.
    """
    binary_representation = io.BytesIO()
    pickle.dump(x, binary_representation, **kwargs)
    return binary_representation.getbuffer().nbytes


def set_logger_config(
    level: int = logging.INFO,
    log_file: str | pathlib.Path | None = None,
    log_to_stdout: bool = True,
    log_rank: bool = False,
    colors: bool = True,
) -> None:
    """
    Set up the ``sparkyrf`` base logger. Should only need to be done once per process.

    Handlers already attached to the base logger are replaced, so calling this again reconfigures rather than
    duplicates the output.

    Parameters
    ----------
    level : int
        The default level for logging. Default is ``logging.INFO``.
    log_file : str | Path, optional
        The file to save the log to.
    log_to_stdout : bool
        A flag indicating if the log should be printed on stdout. Default is True.
    log_rank : bool
        A flag for prepending the MPI rank to the logging message. Default is False.
    colors : bool
        A flag for using colored logs. Default is True.
    """
    rank = f"{MPI.COMM_WORLD.Get_rank()}:" if log_rank else ""
    base_logger = logging.getLogger("sparkyrf")
    for handler in list(base_logger.handlers):
        base_logger.removeHandler(handler)
        handler.close()

    simple_formatter = logging.Formatter(
        f"{rank}[%(asctime)s][%(name)s][%(levelname)s] - %(message)s"
    )
    std_handler = logging.StreamHandler(stream=sys.stdout)
    if colors:
        std_handler.setFormatter(
            colorlog.ColoredFormatter(
                fmt=f"{rank}[%(cyan)s%(asctime)s%(reset)s][%(blue)s%(name)s%(reset)s]"
                f"[%(log_color)s%(levelname)s%(reset)s] - %(message)s",
                datefmt=None,
                reset=True,
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "red,bg_white",
                },
                secondary_log_colors={},
            )
        )
    else:
        std_handler.setFormatter(simple_formatter)

    if log_to_stdout:
        base_logger.addHandler(std_handler)
    if log_file is not None:
        log_file = pathlib.Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(filename=log_file)
        file_handler.setFormatter(simple_formatter)
        base_logger.addHandler(file_handler)
    base_logger.setLevel(level)
