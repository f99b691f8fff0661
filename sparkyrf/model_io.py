import json
import logging
import pathlib
import pickle
import shutil

import sklearn

from sparkyrf.rf_parallel import RandomForestModel

log = logging.getLogger(__name__)  # Get logger instance.

MODEL_CLASS = "sparkyrf.rf_parallel.RandomForestModel"
FORMAT_VERSION = "1.0"
METADATA_FILE = "metadata.json"
DATA_FILE = pathlib.Path("data") / "forest.pickle"


def save_model(
    model: RandomForestModel, path: str | pathlib.Path, overwrite: bool = False
) -> pathlib.Path:
    """
    Save a trained random forest model to a directory.

    The directory contains a 'metadata.json' describing the model and the pickled trees in 'data/forest.pickle'.

    Parameters
    ----------
    model : RandomForestModel
        The model to save.
    path : str | pathlib.Path
        The model directory to create.
    overwrite : bool
        Whether to replace an existing directory. Default is False.

    Returns
    -------
    pathlib.Path
        The model directory.

    Raises
    ------
    FileExistsError
        If the path exists and ``overwrite`` is False.
    """
    path = pathlib.Path(path)
    if path.exists():
        if not overwrite:
            raise FileExistsError(f"Model path {path} already exists.")
        log.info(f"Overwriting existing model at {path}.")
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
    (path / DATA_FILE).parent.mkdir(parents=True)

    metadata = {
        "class": MODEL_CLASS,
        "version": FORMAT_VERSION,
        "sklearn_version": sklearn.__version__,
        "n_trees": model.n_trees,
        "labels": sorted({float(label) for labels in model.tree_labels for label in labels}),
        "strategy": model.strategy,
    }
    with open(path / METADATA_FILE, "w") as f:
        json.dump(metadata, f, indent=2)
    with open(path / DATA_FILE, "wb") as f:
        pickle.dump(
            {"trees": model.trees, "tree_labels": model.tree_labels}, f, protocol=5
        )
    log.info(f"Saved model with {model.n_trees} trees to {path.absolute()}.")
    return path


def load_model(path: str | pathlib.Path) -> RandomForestModel:
    """
    Load a random forest model saved with ``save_model``.

    Parameters
    ----------
    path : str | pathlib.Path
        The model directory.

    Returns
    -------
    RandomForestModel
        The loaded model.
    """
    path = pathlib.Path(path)
    with open(path / METADATA_FILE) as f:
        metadata = json.load(f)
    if metadata.get("class") != MODEL_CLASS or metadata.get("version") != FORMAT_VERSION:
        raise ValueError(
            f"Cannot load {path}: expected class {MODEL_CLASS} in format version {FORMAT_VERSION}, got class "
            f"{metadata.get('class')} in format version {metadata.get('version')}."
        )
    if metadata.get("sklearn_version") != sklearn.__version__:
        log.warning(
            f"Model was saved with scikit-learn {metadata.get('sklearn_version')}, loading with "
            f"{sklearn.__version__}."
        )
    with open(path / DATA_FILE, "rb") as f:
        data = pickle.load(f)
    model = RandomForestModel(data["trees"], data["tree_labels"], metadata["strategy"])
    if model.n_trees != metadata["n_trees"]:
        raise ValueError(
            f"Cannot load {path}: metadata lists {metadata['n_trees']} trees but data holds {model.n_trees}."
        )
    log.info(f"Loaded model with {model.n_trees} trees from {path}.")
    return model
