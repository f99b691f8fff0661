# DO NOT CHANGE THE NAME OF THIS FILE!
# In pytest, the conftest.py file serves as a means of providing fixtures for an entire directory. Fixtures defined in
# a contest.py can be used by any test in that package without needing to import them (pytest will automatically
# discover them. Also see https://docs.pytest.org/en/stable/reference/fixtures.html.
import pathlib
import shutil
from typing import Generator

import numpy as np
import pytest
from sklearn.datasets import dump_svmlight_file, make_classification


def make_binary_classification(
    n_samples: int = 300, n_features: int = 8, random_state: int = 0
) -> tuple[np.ndarray, np.ndarray]:
    """
    Generate a well separated binary classification problem with labels in {0, 1}.

    Parameters
    ----------
    n_samples : int
        The number of samples.
    n_features : int
        The number of features.
    random_state : int
        The random seed.

    Returns
    -------
    numpy.ndarray
        The samples.
    numpy.ndarray
        The labels.
    """
    return make_classification(
        n_samples=n_samples,
        n_features=n_features,
        n_informative=4,
        n_redundant=0,
        n_clusters_per_class=1,
        class_sep=2.0,
        flip_y=0.0,
        random_state=random_state,
    )


def write_libsvm_file(path: pathlib.Path, x: np.ndarray, y: np.ndarray) -> pathlib.Path:
    """Write samples and labels to ``path`` in LIBSVM format with one-based feature indices."""
    dump_svmlight_file(x, y, str(path), zero_based=False)
    return path


@pytest.fixture
def libsvm_file(tmp_path: pathlib.Path) -> pathlib.Path:
    """
    Fixture writing a small binary classification dataset in LIBSVM format.

    Parameters
    ----------
    tmp_path : pathlib.Path
        The temporary directory to write the file to.
    """
    x, y = make_binary_classification()
    return write_libsvm_file(tmp_path / "data.libsvm", x, y)


@pytest.fixture
def clean_mpi_tmp_path(
    mpi_tmp_path: pathlib.Path,
) -> Generator[pathlib.Path, None, None]:
    """
    Fixture to automatically clean up the temporary path after the test runs.

    Parameters
    ----------
    mpi_tmp_path : pathlib.Path
        The temporary path considered.
    """
    yield mpi_tmp_path
    # Automatically clean up the temporary directory after the test.
    shutil.rmtree(str(mpi_tmp_path), ignore_errors=True)
