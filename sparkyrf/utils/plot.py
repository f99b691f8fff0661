import pathlib

import matplotlib.pyplot as plt
import numpy as np

CURVE_KWARGS = {
    "color": "C0",
    "linewidth": 1,
    "marker": ".",
    "markersize": 3,
    "zorder": 10,
}
CHANCE_KWARGS = {
    "linestyle": "--",
    "color": "k",
    "linewidth": 0.5,
    "alpha": 0.5,
    "zorder": 5,
}


def plot_evaluation_curves(
    roc: np.ndarray,
    pr: np.ndarray,
    area_under_roc: float,
    area_under_pr: float,
    positive_fraction: float | None = None,
) -> tuple[plt.Figure, np.ndarray]:
    """
    Plot the ROC curve and the precision-recall curve side by side.

    Parameters
    ----------
    roc : numpy.ndarray
        The ROC curve as (false positive rate, true positive rate) points.
    pr : numpy.ndarray
        The precision-recall curve as (recall, precision) points.
    area_under_roc : float
        The area under the ROC curve, shown in the title.
    area_under_pr : float
        The area under the precision-recall curve, shown in the title.
    positive_fraction : float, optional
        The fraction of positive samples. If given, drawn as chance level of the precision-recall curve.

    Returns
    -------
    matplotlib.figure.Figure
        The figure.
    numpy.ndarray
        The two axes.
    """
    fig, axes = plt.subplots(1, 2, figsize=(8, 4))
    ax_roc, ax_pr = axes

    ax_roc.plot(roc[:, 0], roc[:, 1], **CURVE_KWARGS)
    ax_roc.plot([0, 1], [0, 1], **CHANCE_KWARGS)
    ax_roc.set_xlabel("False positive rate")
    ax_roc.set_ylabel("True positive rate")
    ax_roc.set_title(f"ROC (AUC = {area_under_roc:.3f})")

    ax_pr.plot(pr[:, 0], pr[:, 1], **CURVE_KWARGS)
    if positive_fraction is not None:
        ax_pr.axhline(positive_fraction, **CHANCE_KWARGS)
    ax_pr.set_xlabel("Recall")
    ax_pr.set_ylabel("Precision")
    ax_pr.set_title(f"Precision-recall (AUC = {area_under_pr:.3f})")

    for ax in axes:
        ax.set_xlim(-0.02, 1.02)
        ax.set_ylim(-0.02, 1.02)
        ax.grid(alpha=0.3)
    fig.tight_layout()
    return fig, axes


def save_evaluation_curves(
    roc: np.ndarray,
    pr: np.ndarray,
    area_under_roc: float,
    area_under_pr: float,
    output_file: pathlib.Path,
    positive_fraction: float | None = None,
) -> pathlib.Path:
    """Plot the ROC and precision-recall curves and save the figure to ``output_file``."""
    fig, _ = plot_evaluation_curves(
        roc, pr, area_under_roc, area_under_pr, positive_fraction
    )
    fig.savefig(output_file)
    plt.close(fig)
    return output_file
