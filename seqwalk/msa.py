"""
Multiple sequence alignment, distance matrix and tree construction for seqwalk.
"""

import subprocess
import sys
import os

import numpy as np
import pandas as pd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.colors import ListedColormap

from Bio import AlignIO, Phylo
from Bio.Align import MultipleSeqAlignment
from Bio.Phylo.BaseTree import Tree
from Bio.Phylo.TreeConstruction import DistanceCalculator, DistanceMatrix, DistanceTreeConstructor


# Residue classes used to colour alignment plots; index 0 is the gap
RESIDUE_GROUPS = [
    "-",
    "GAVLI",  # small hydrophobic
    "FYW",  # aromatic
    "CM",  # sulfur-containing
    "ST",  # hydroxyl
    "KRH",  # positive charge
    "DE",  # negative charge
    "NQ",  # amide
    "P",
]
RESIDUE_COLOURS = [
    "#ffffff", "#80a0f0", "#15a4a4", "#f08080", "#15c015",
    "#f01505", "#c048c0", "#00ced1", "#c0c000", "#bbbbbb",
]


def run_clustalo(fasta_file: str, output_dir: str, threads: int = 1) -> MultipleSeqAlignment:
    """Align a sequence set with Clustal Omega.

    Parameters
    ----------
    fasta_file : str
        Path to the unaligned FASTA file
    output_dir : str
        Directory for output files
    threads : int
        Number of threads for clustalo (default: 1)

    Returns
    -------
    MultipleSeqAlignment
        The alignment read back from the FASTA output
    """

    base_name = os.path.splitext(os.path.basename(fasta_file))[0]
    aln_file = os.path.join(output_dir, f"{base_name}_aln.fasta")

    print(f"Running clustalo on {fasta_file}...")

    cmd = [
        "clustalo",
        "-i",
        fasta_file,
        "-o",
        aln_file,
        "--outfmt",
        "fasta",
        "--threads",
        str(threads),
        "--force",
    ]

    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        sys.stderr.write(f"Failed to align sequences: {e.stderr}\n")
        sys.exit(1)

    print(f"Alignment saved to {aln_file}")
    return read_alignment(aln_file)


def read_alignment(path: str, fmt: str = "fasta") -> MultipleSeqAlignment:
    return AlignIO.read(path, fmt)


def distance_matrix(alignment: MultipleSeqAlignment, model: str = "identity") -> DistanceMatrix:
    """Pairwise distances between the aligned sequences.

    Parameters
    ----------
    alignment : MultipleSeqAlignment
        Input alignment.
    model : str
        Any model known to ``DistanceCalculator``: "identity" (default) or a
        substitution matrix name such as "blosum62".
    """

    return DistanceCalculator(model).get_distance(alignment)


def distance_frame(dm: DistanceMatrix) -> pd.DataFrame:
    """Convert a lower-triangular DistanceMatrix into a square DataFrame."""

    names = list(dm.names)
    values = [[dm[a, b] for b in names] for a in names]
    return pd.DataFrame(values, index=names, columns=names)


def build_tree(dm: DistanceMatrix, method: str = "nj") -> Tree:
    """Build a tree from a distance matrix by neighbour joining or UPGMA."""

    constructor = DistanceTreeConstructor()
    if method == "nj":
        return constructor.nj(dm)
    if method == "upgma":
        return constructor.upgma(dm)
    raise ValueError("method must be 'nj' or 'upgma'")


def write_tree(tree: Tree, path: str, fmt: str = "newick") -> str:
    Phylo.write(tree, path, fmt)
    print(f"Tree written to {path}")
    return path


def _residue_class(residue: str) -> int:
    residue = residue.upper()
    for i, group in enumerate(RESIDUE_GROUPS):
        if residue in group:
            return i
    return len(RESIDUE_GROUPS)


def plot_alignment(alignment: MultipleSeqAlignment, path: str) -> str:
    """Render an alignment as a residue-class colour grid (PNG, PDF, ...)."""

    grid = np.array([[_residue_class(c) for c in str(rec.seq)] for rec in alignment])
    n_rows, n_cols = grid.shape

    fig, ax = plt.subplots(figsize=(max(6, n_cols * 0.12), max(2, n_rows * 0.3)))
    ax.imshow(
        grid,
        aspect="auto",
        interpolation="nearest",
        cmap=ListedColormap(RESIDUE_COLOURS),
        vmin=0,
        vmax=len(RESIDUE_COLOURS) - 1,
    )
    ax.set_yticks(range(n_rows))
    ax.set_yticklabels([rec.id for rec in alignment], fontsize=8)
    ax.set_xlabel("Alignment position")
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)

    print(f"Alignment plot saved to {path}")
    return path


def plot_tree(tree: Tree, path: str) -> str:
    """Draw a tree with Bio.Phylo and save the figure."""

    n_leaves = len(tree.get_terminals())
    fig, ax = plt.subplots(figsize=(8, max(3, n_leaves * 0.35)))
    Phylo.draw(tree, axes=ax, do_show=False)
    fig.savefig(path)
    plt.close(fig)

    print(f"Tree plot saved to {path}")
    return path
