"""
Pairwise 3D structure superposition and PyMOL rendering for seqwalk.
"""

import os
import subprocess
import sys

import numpy as np

from Bio import Align
from Bio.Align import substitution_matrices
from Bio.PDB import MMCIFParser, PDBIO, PDBParser, Superimposer
from Bio.PDB.Residue import Residue
from Bio.PDB.Structure import Structure
from Bio.SeqUtils import seq1
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .dependencies import check_dependencies


@dataclass
class StructureAlignment:
    fixed_chain: str
    moving_chain: str
    rmsd: float
    rotation: np.ndarray
    translation: np.ndarray
    pairs: List[Tuple[Residue, Residue]] = field(default_factory=list, repr=False)

    @property
    def n_aligned(self) -> int:
        return len(self.pairs)


def load_structure(path: str, name: Optional[str] = None) -> Structure:
    """Load a PDB or mmCIF file (chosen by extension)."""

    name = name or os.path.splitext(os.path.basename(path))[0]
    if path.lower().endswith((".cif", ".mmcif")):
        parser = MMCIFParser(QUIET=True)
    else:
        parser = PDBParser(QUIET=True)
    return parser.get_structure(name, path)


def chain_residues(structure: Structure, chain_id: Optional[str] = None) -> Tuple[str, List[Residue]]:
    """Standard residues carrying a CA atom in the first model of a chain.

    The first chain is used when ``chain_id`` is not given.
    """

    model = next(iter(structure))
    if chain_id is None:
        chain = next(iter(model))
    else:
        chain = model[chain_id]
    residues = [r for r in chain if r.id[0] == " " and "CA" in r]
    return chain.id, residues


def residue_sequence(residues: List[Residue]) -> str:
    return "".join(seq1(r.get_resname()) for r in residues)


def _sequence_aligner() -> Align.PairwiseAligner:
    aligner = Align.PairwiseAligner()
    aligner.mode = "global"
    aligner.substitution_matrix = substitution_matrices.load("BLOSUM62")
    aligner.open_gap_score = -10
    aligner.extend_gap_score = -0.5
    return aligner


def align_structures(
        fixed: Structure,
        moving: Structure,
        chain_fixed: Optional[str] = None,
        chain_moving: Optional[str] = None,
    ) -> StructureAlignment:
    """Superimpose ``moving`` onto ``fixed`` using sequence-matched CA atoms.

    Residues are paired through a global BLOSUM62 alignment of the two chain
    sequences, the least-squares fit is computed on the paired CA atoms and
    applied to every atom of ``moving``.

    Parameters
    ----------
    fixed, moving : Bio.PDB.Structure.Structure
        Reference and mobile structures; ``moving`` is transformed in place.
    chain_fixed, chain_moving : str, optional
        Chains to pair (default: first chain of each structure).

    Returns
    -------
    StructureAlignment
        RMSD over the paired CA atoms, the rotation/translation applied and
        the residue pairs.
    """

    fixed_id, fixed_res = chain_residues(fixed, chain_fixed)
    moving_id, moving_res = chain_residues(moving, chain_moving)

    best = _sequence_aligner().align(residue_sequence(fixed_res), residue_sequence(moving_res))[0]

    pairs = []
    for (f_start, f_end), (m_start, m_end) in zip(*best.aligned):
        for offset in range(f_end - f_start):
            pairs.append((fixed_res[f_start + offset], moving_res[m_start + offset]))

    if len(pairs) < 3:
        raise ValueError(f"Only {len(pairs)} residues could be paired; at least 3 are needed")

    sup = Superimposer()
    sup.set_atoms([f["CA"] for f, _ in pairs], [m["CA"] for _, m in pairs])
    sup.apply(list(moving.get_atoms()))
    rotation, translation = sup.rotran

    print(f"Superimposed {len(pairs)} CA atoms: RMSD {sup.rms:.3f} A")
    return StructureAlignment(
        fixed_chain=fixed_id,
        moving_chain=moving_id,
        rmsd=float(sup.rms),
        rotation=np.asarray(rotation),
        translation=np.asarray(translation),
        pairs=pairs,
    )


def save_structure(structure: Structure, path: str) -> str:
    io = PDBIO()
    io.set_structure(structure)
    io.save(path)
    return path


def write_pymol_script(
        fixed_path: str,
        moving_path: str,
        script_path: str,
        image_path: Optional[str] = None,
        fixed_name: str = "fixed",
        moving_name: str = "moving",
    ) -> str:
    """Write a PyMOL script showing two (already superposed) structures.

    Parameters
    ----------
    fixed_path, moving_path : str
        Structure files; ``moving_path`` should hold the transformed structure.
    script_path : str
        Output ``.pml`` path.
    image_path : str, optional
        If given the script also ray-traces a PNG.
    """

    lines = [
        "# PyMOL superposition script",
        "delete all",
        "bg_color white",
        f"load {os.path.abspath(fixed_path)}, {fixed_name}",
        f"load {os.path.abspath(moving_path)}, {moving_name}",
        "hide everything",
        "show cartoon",
        f"color marine, {fixed_name}",
        f"color orange, {moving_name}",
        "orient",
    ]
    if image_path:
        lines.append(f"png {os.path.abspath(image_path)}, width=1200, height=900, dpi=150, ray=1")

    with open(script_path, "w") as f:
        f.write("\n".join(lines) + "\n")

    print(f"PyMOL script written to {script_path}")
    return script_path


def render_pymol(script_path: str, batch: bool = False) -> None:
    """Open a PyMOL script in the external viewer (``batch`` runs it headless)."""

    check_dependencies(["pymol"])

    cmd = ["pymol"]
    if batch:
        cmd.append("-cq")
    cmd.append(script_path)

    print(f"Launching PyMOL with {script_path}...")

    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        sys.stderr.write(f"Failed to run PyMOL: {e.stderr}\n")
        sys.exit(1)
