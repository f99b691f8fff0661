import json
import pathlib

import numpy as np
import pytest
from conftest import make_binary_classification
from mpi4py import MPI

from sparkyrf.model_io import load_model, save_model
from sparkyrf.rf_parallel import DistributedRandomForest, RandomForestModel


@pytest.fixture
def trained_model() -> tuple[RandomForestModel, np.ndarray]:
    """Fixture providing a small trained model together with the samples to predict."""
    x, y = make_binary_classification(n_samples=150)
    forest = DistributedRandomForest(4, MPI.COMM_SELF, random_state=9, node_local_jobs=1)
    forest.train(x, y)
    return forest.build_shared_global_model(), x


def test_save_and_load_model(
    trained_model: tuple[RandomForestModel, np.ndarray], tmp_path: pathlib.Path
) -> None:
    """
    Test that a saved and loaded model predicts the same scores and keeps its metadata.

    Parameters
    ----------
    trained_model : tuple[RandomForestModel, np.ndarray]
        The model and samples to predict.
    tmp_path : pathlib.Path
        The temporary directory to save the model to.
    """
    model, x = trained_model
    path = save_model(model, tmp_path / "RFmod")
    assert (path / "metadata.json").is_file()
    assert (path / "data" / "forest.pickle").is_file()
    metadata = json.loads((path / "metadata.json").read_text())
    assert metadata["n_trees"] == 4
    assert metadata["labels"] == [0.0, 1.0]
    assert metadata["strategy"]["impurity"] == "gini"

    loaded = load_model(path)
    assert loaded.n_trees == model.n_trees
    assert loaded.strategy == model.strategy
    np.testing.assert_array_equal(loaded.predict_positive_score(x), model.predict_positive_score(x))
    assert loaded.to_debug_string() == model.to_debug_string()


def test_save_model_existing_path(
    trained_model: tuple[RandomForestModel, np.ndarray], tmp_path: pathlib.Path
) -> None:
    """
    Test that existing model directories are only replaced when overwriting is requested.

    Parameters
    ----------
    trained_model : tuple[RandomForestModel, np.ndarray]
        The model and samples to predict.
    tmp_path : pathlib.Path
        The temporary directory to save the model to.
    """
    model, _ = trained_model
    path = tmp_path / "RFmod"
    save_model(model, path)
    with pytest.raises(FileExistsError):
        save_model(model, path)
    (path / "stale.txt").write_text("stale")
    save_model(model, path, overwrite=True)
    assert not (path / "stale.txt").exists()
    assert load_model(path).n_trees == 4


def test_load_model_wrong_format(
    trained_model: tuple[RandomForestModel, np.ndarray], tmp_path: pathlib.Path
) -> None:
    """
    Test that directories with unknown metadata are rejected.

    Parameters
    ----------
    trained_model : tuple[RandomForestModel, np.ndarray]
        The model and samples to predict.
    tmp_path : pathlib.Path
        The temporary directory to save the model to.
    """
    model, _ = trained_model
    path = save_model(model, tmp_path / "RFmod")
    metadata = json.loads((path / "metadata.json").read_text())
    metadata["version"] = "0.1"
    (path / "metadata.json").write_text(json.dumps(metadata))
    with pytest.raises(ValueError):
        load_model(path)
    with pytest.raises(FileNotFoundError):
        load_model(tmp_path / "missing")
