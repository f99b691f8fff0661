import logging
from typing import Any, Sequence

from .args import (
    ArgsCache,
    parse_args,
    parse_double,
    parse_flags,
    parse_integer,
    parse_long,
    parse_string,
)

# Legacy option names mapped to their corrected spelling. The legacy name is still read first.
LEGACY_KEY_ALIASES = {"numTress": "numTrees"}

USAGE = """\
Usage: sparkyrf --trainlibsvm <path> [options]

Train a distributed random forest binary classifier on LIBSVM data, print evaluation curves, and save the model.

Data:
  --trainlibsvm <path>                Input data in LIBSVM format (default: "")
  --numFeatures <int>                 Number of features, -1 to infer from the data (default: -1)
  --minPartitions <int>               Minimum number of data partitions (default: 10)
  --trainFrac <double>                Fraction of records used for training (default: 0.7)
  --splitSeed <long>                  Seed of the random train-test split (default: random)
Model:
  --numTress <int>                    Number of trees (default: 100), also accepted as --numTrees
  --treeDepth <int>                   Maximum tree depth (default: 5)
  --maxBins <int>                     Maximum number of bins for continuous features (default: 32)
  --featureSubsetStrategy <string>    auto, all, sqrt, log2, onethird, a fraction, or a count (default: auto)
  --subsamplingRate <double>          Fraction of the training data per tree (default: 1 / number of trees)
  --seed <int>                        Model seed (default: 12345)
  --scoreMode <string>                How tree outputs are averaged, vote or probability (default: vote)
Evaluation and output:
  --numBins <int>                     Number of bins of the evaluation curves, 0 for no down-sampling (default: 100)
  --modelOutName <path>               Output directory of the saved model (default: RFmod)
  --overwrite                         Overwrite an existing model directory
  --outputDir <path>                  If given, write results csv and curve plots below this directory
  --outputLabel <string>              Label added to the output file names (default: "")
  --experimentId <string>             Subdirectory of the output directory (default: "")
Logging:
  --logPath <path>                    If given, also log to <logPath>/sparkyrf.log
  --loggingLevel <int>                Logging level (default: 20)
  --noColors                          Do not use colored logs
  --logRank                           Prepend the MPI rank to log messages
  --help                              Print this message and exit
"""


def usage() -> str:
    """
    Get the help text of the ``sparkyrf`` command line.

    Returns
    -------
    str
        The usage message.
    """
    return USAGE


def parse_legacy_integer(
    tokens: Sequence[str], key: str, default: int, cache: ArgsCache | None = None
) -> int:
    """
    Parse an integer option that also accepts the corrected spelling of its legacy name.

    The legacy name wins if both names are given.

    Parameters
    ----------
    tokens : Sequence[str]
        The command-line tokens.
    key : str
        The legacy option name, must be a key of ``LEGACY_KEY_ALIASES``.
    default : int
        The value returned if neither name is present.
    cache : ArgsCache, optional
        Cache for looking up which options are present.

    Returns
    -------
    int
        The parsed value or ``default``.
    """
    alias = LEGACY_KEY_ALIASES[key]
    present = parse_args(tokens, cache)
    if key not in present and alias in present:
        return parse_integer(tokens, alias, default)
    return parse_integer(tokens, key, default)


def get_training_kwargs(
    tokens: Sequence[str], cache: ArgsCache | None = None
) -> dict[str, Any]:
    """
    Get the configuration of a training run from command-line tokens and return it as dict.

    Parameters
    ----------
    tokens : Sequence[str]
        The command-line tokens, without the program name.
    cache : ArgsCache, optional
        Cache for the option and flag lookups.

    Returns
    -------
    dict[str, Any]
        Keyword arguments of ``sparkyrf.train.train_random_forest_on_libsvm`` plus the logging settings "help",
        "log_path", "logging_level", "colors", and "log_rank".
    """
    flags = parse_flags(tokens, cache)
    subsampling_rate = (
        parse_double(tokens, "subsamplingRate", 1.0)
        if "subsamplingRate" in parse_args(tokens, cache)
        else None
    )
    split_seed = (
        parse_long(tokens, "splitSeed", 0)
        if "splitSeed" in parse_args(tokens, cache)
        else None
    )
    return {
        "data_path": parse_string(tokens, "trainlibsvm", ""),
        "n_features": parse_integer(tokens, "numFeatures", -1),
        "min_partitions": parse_integer(tokens, "minPartitions", 10),
        "train_frac": parse_double(tokens, "trainFrac", 0.7),
        "split_seed": split_seed,
        "n_trees": parse_legacy_integer(tokens, "numTress", 100, cache),
        "max_depth": parse_integer(tokens, "treeDepth", 5),
        "max_bins": parse_integer(tokens, "maxBins", 32),
        "subsampling_rate": subsampling_rate,
        "feature_subset_strategy": parse_string(tokens, "featureSubsetStrategy", "auto"),
        "random_state_model": parse_integer(tokens, "seed", 12345),
        "score_mode": parse_string(tokens, "scoreMode", "vote"),
        "num_bins": parse_integer(tokens, "numBins", 100),
        "model_out_name": parse_string(tokens, "modelOutName", "RFmod"),
        "overwrite": "overwrite" in flags,
        "output_dir": parse_string(tokens, "outputDir", ""),
        "output_label": parse_string(tokens, "outputLabel", ""),
        "experiment_id": parse_string(tokens, "experimentId", ""),
        "help": "help" in flags,
        "log_path": parse_string(tokens, "logPath", ""),
        "logging_level": parse_integer(tokens, "loggingLevel", logging.INFO),
        "colors": "noColors" not in flags,
        "log_rank": "logRank" in flags,
    }
