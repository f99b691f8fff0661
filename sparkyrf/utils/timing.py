import logging
import re
import string
import time
from typing import Any

from mpi4py import MPI

log = logging.getLogger(__name__)  # Get logger instance.


class MPITimer:
    """
    Context-manager timer measuring one stage of a run on all ranks of a communicator.

    On exit, the rank-local elapsed time is all-reduced to the global average. Both values can then be stored in the
    run's result dicts with ``store``.

    Attributes
    ----------
    comm : MPI.Comm
        The MPI communicator to use.
    elapsed_time_average : float
        The average elapsed time over all ranks in seconds.
    elapsed_time_local : float
        The rank-local elapsed time in seconds.
    name : str
        Label of the measured stage, e.g., "training". Used for printing and as key suffix in ``store``.
    output_format : str
        Format string template used for printing the output. May reference all attributes of the timer.
    print_on_exit : bool
        Whether to log the measured time on rank 0 in ``__exit__``.
    """

    def __init__(
        self,
        comm: MPI.Comm,
        name: str = "",
        print_on_exit: bool = True,
        output_format: str = "Elapsed time {name}: global average {elapsed_time_average:.2g}s, "
        "local {elapsed_time_local:.2g}s",
    ) -> None:
        """
        Create a new timer.

        Parameters
        ----------
        comm : MPI.Comm
            The MPI communicator.
        name : str
            Label of the measured stage.
        print_on_exit : bool
            Whether to log the measured time on rank 0 in ``__exit__``.
        output_format : str
            Format string template used for printing the output. May reference all attributes of the timer.
        """
        self.comm = comm
        self.name = name
        self.print_on_exit = print_on_exit
        self.output_format = output_format

        self.start_time: float
        self.end_time: float
        self.elapsed_time_local: float
        self.elapsed_time_average: float

    @property
    def result_key(self) -> str:
        """The key used in the result dicts, i.e., 'time_sec_<name>' with whitespace replaced by underscores."""
        return "time_sec_" + re.sub(r"\s", "_", self.name)

    def start(self) -> None:
        """Start the timer."""
        self.start_time = time.perf_counter()

    def stop(self) -> None:
        """Stop the timer and update ``elapsed_time_local``."""
        self.end_time = time.perf_counter()
        self.elapsed_time_local = self.end_time - self.start_time

    def allreduce_for_average_time(self) -> None:
        """Compute the global average using allreduce and update ``elapsed_time_average``."""
        self.elapsed_time_average = (
            self.comm.allreduce(self.elapsed_time_local, op=MPI.SUM) / self.comm.size
        )

    def print(self) -> None:
        """Log the elapsed time using the output template."""
        template_keywords = {
            key for (_, key, _, _) in string.Formatter().parse(self.output_format)
        }
        template_kwargs = {
            key: value for key, value in vars(self).items() if key in template_keywords
        }
        log.info(self.output_format.format(**template_kwargs))

    def store(
        self, global_results: dict[str, Any], local_results: dict[str, Any]
    ) -> None:
        """
        Store the global average and the rank-local time in the given result dicts.

        Parameters
        ----------
        global_results : dict[str, Any]
            The global results dictionary.
        local_results : dict[str, Any]
            The rank-local results dictionary.
        """
        global_results[self.result_key] = self.elapsed_time_average
        local_results[self.result_key] = self.elapsed_time_local

    def __enter__(self) -> "MPITimer":
        """
        Start the timer on entering a 'with' statement.

        Returns
        -------
        MPITimer
            This timer object.
        """
        self.start()
        return self

    def __exit__(self, *args: tuple[Any, ...]) -> None:
        """
        Stop the timer, compute the global average, and optionally log the result on rank 0.

        Parameters
        ----------
        args : Any
            Unused, only to fulfill ``__exit__`` interface.
        """
        self.stop()
        self.allreduce_for_average_time()
        if self.print_on_exit and self.comm.rank == 0:
            self.print()
