"""
SVM classification of sequences with a gappy pair kernel, evaluation and
per-residue prediction profiles.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from dataclasses import dataclass
from scipy import sparse
from sklearn.metrics import (
    accuracy_score,
    balanced_accuracy_score,
    confusion_matrix,
    matthews_corrcoef,
)
from sklearn.svm import SVC
from typing import Dict, Optional, Sequence, Tuple

from .kernels import GappyPairKernel


@dataclass
class GappyPairModel:
    """A fitted SVM together with its explicit feature weights.

    ``feature_weights @ x + offset`` equals the SVM decision value of a
    sequence whose kernel feature vector is ``x``.
    """

    kernel: GappyPairKernel
    svm: SVC
    train_features: sparse.csr_matrix
    feature_weights: np.ndarray
    offset: float

    @property
    def classes(self) -> np.ndarray:
        return self.svm.classes_


def read_labels(path: str) -> np.ndarray:
    """Read class labels, one per line (the last column if there are several)."""

    table = pd.read_csv(path, header=None, sep=r"[\s,]+", engine="python", comment="#", dtype=str)
    labels = table.iloc[:, -1].str.strip()
    numeric = pd.to_numeric(labels, errors="coerce")
    if numeric.notna().all():
        return numeric.astype(int).to_numpy()
    return labels.to_numpy()


def train_test_split_indices(
        n: int,
        train_fraction: float = 0.75,
        seed: Optional[int] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
    """Randomly partition ``range(n)`` into training and test indices.

    Sampling is without replacement; the training set holds
    ``floor(train_fraction * n)`` indices and the test set the rest.

    Returns
    -------
    tuple of numpy.ndarray
        Sorted training and test indices.
    """

    if not 0 < train_fraction < 1:
        raise ValueError("train_fraction must lie in (0, 1)")

    rng = np.random.default_rng(seed)
    n_train = int(np.floor(n * train_fraction))
    perm = rng.permutation(n)
    return np.sort(perm[:n_train]), np.sort(perm[n_train:])


def train_classifier(
        seqs: Sequence[str],
        labels: Sequence,
        kernel: Optional[GappyPairKernel] = None,
        cost: float = 1.0,
    ) -> GappyPairModel:
    """Train a binary SVM on a precomputed gappy pair kernel.

    Parameters
    ----------
    seqs : sequence of str
        Training sequences.
    labels : sequence
        Two-class labels, e.g. 1 / -1.
    kernel : GappyPairKernel, optional
        Kernel (default: ``GappyPairKernel(k=1, m=3)``).
    cost : float
        SVM cost parameter C.

    Returns
    -------
    GappyPairModel
    """

    kernel = kernel or GappyPairKernel(k=1, m=3)
    labels = np.asarray(labels)
    if len(np.unique(labels)) != 2:
        raise ValueError("Binary classification needs exactly two label values")
    if len(labels) != len(seqs):
        raise ValueError(f"Got {len(seqs)} sequences but {len(labels)} labels")

    features = kernel.features(seqs)
    gram = (features @ features.T).toarray()

    print(f"Training SVM ({kernel}) on {len(seqs)} sequences...")
    svm = SVC(kernel="precomputed", C=cost)
    svm.fit(gram, labels)

    weights = np.asarray(svm.dual_coef_ @ features[svm.support_].toarray()).ravel()

    return GappyPairModel(
        kernel=kernel,
        svm=svm,
        train_features=features,
        feature_weights=weights,
        offset=float(svm.intercept_[0]),
    )


def decision_function(model: GappyPairModel, seqs: Sequence[str]) -> np.ndarray:
    features = model.kernel.features(seqs)
    gram = (features @ model.train_features.T).toarray()
    return model.svm.decision_function(gram)


def predict(model: GappyPairModel, seqs: Sequence[str]) -> np.ndarray:
    features = model.kernel.features(seqs)
    gram = (features @ model.train_features.T).toarray()
    return model.svm.predict(gram)


def evaluate(y_true: Sequence, y_pred: Sequence, labels: Sequence = (1, -1)) -> Dict[str, object]:
    """Classification metrics with ``labels[0]`` as the positive class.

    Returns
    -------
    dict
        accuracy, balanced_accuracy, sensitivity, specificity, precision,
        mcc and the confusion matrix (rows: true label, columns: predicted,
        both in ``labels`` order).
    """

    labels = list(labels)
    cm = confusion_matrix(y_true, y_pred, labels=labels)
    tp, fn, fp, tn = cm[0, 0], cm[0, 1], cm[1, 0], cm[1, 1]

    def _ratio(a, b):
        return float(a) / float(b) if b else 0.0

    return {
        "accuracy": float(accuracy_score(y_true, y_pred)),
        "balanced_accuracy": float(balanced_accuracy_score(y_true, y_pred)),
        "sensitivity": _ratio(tp, tp + fn),
        "specificity": _ratio(tn, tn + fp),
        "precision": _ratio(tp, tp + fp),
        "mcc": float(matthews_corrcoef(y_true, y_pred)),
        "confusion_matrix": pd.DataFrame(cm, index=labels, columns=labels),
    }


def prediction_profile(model: GappyPairModel, seq: str) -> np.ndarray:
    """Contribution of every residue to the decision value of ``seq``.

    Each feature occurrence spreads its weight evenly over the residues of
    its two k-mers and the offset is spread over the whole sequence, so the
    profile sums to the decision value.
    """

    kernel = model.kernel
    occurrences = kernel.occurrences(seq)
    profile = np.zeros(len(seq), dtype=float)

    norm = 1.0
    if kernel.normalized and occurrences:
        counts = np.bincount([index for _, _, index in occurrences])
        norm = float(np.sqrt(np.sum(counts.astype(float) ** 2)))

    k = kernel.k
    for pos, gap, index in occurrences:
        share = model.feature_weights[index] / norm / (2 * k)
        profile[pos:pos + k] += share
        second = pos + k + gap
        profile[second:second + k] += share

    if len(seq):
        profile += model.offset / len(seq)
    return profile


def plot_profile(profile: np.ndarray, seq: str, path: str, title: Optional[str] = None) -> str:
    """Plot a prediction profile along the sequence and save it."""

    positions = np.arange(1, len(profile) + 1)
    fig, ax = plt.subplots(figsize=(max(6, len(seq) * 0.15), 3))
    ax.bar(positions, profile, color=np.where(profile >= 0, "tab:blue", "tab:red"), width=1.0)
    ax.axhline(0, color="black", linewidth=0.5)
    if len(seq) <= 80:
        ax.set_xticks(positions)
        ax.set_xticklabels(list(seq), fontsize=7)
    ax.set_xlabel("Position")
    ax.set_ylabel("Contribution")
    if title:
        ax.set_title(title)
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)

    print(f"Prediction profile saved to {path}")
    return path
