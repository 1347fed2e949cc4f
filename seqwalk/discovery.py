"""
De novo motif discovery with MEME for seqwalk.
"""

import subprocess
import sys
import os
from typing import Dict

from Bio import motifs

from .motifdb import index_motifs


def run_meme(
        fasta_file: str,
        output_dir: str,
        nmotifs: int = 3,
        minw: int = 6,
        maxw: int = 15,
        alphabet: str = "dna",
        revcomp: bool = True,
        mod: str = "zoops",
    ) -> Dict[str, motifs.Motif]:
    """Discover motifs in a sequence set with MEME and read them back.

    Parameters
    ----------
    fasta_file : str
        Path to the input FASTA file
    output_dir : str
        Directory for output files; MEME writes into ``output_dir/meme_out``
    nmotifs : int
        Number of motifs to report (default: 3)
    minw, maxw : int
        Minimum and maximum motif width
    alphabet : str
        "dna" or "protein"
    revcomp : bool
        Consider both strands (DNA only)
    mod : str
        Site distribution model: "oops", "zoops" or "anr"

    Returns
    -------
    Dict[str, Bio.motifs.Motif]
        Discovered motifs keyed by name
    """

    if alphabet not in ("dna", "protein"):
        raise ValueError("alphabet must be 'dna' or 'protein'")
    if mod not in ("oops", "zoops", "anr"):
        raise ValueError("mod must be 'oops', 'zoops' or 'anr'")

    meme_dir = os.path.join(output_dir, "meme_out")

    print(f"Running MEME motif discovery on {fasta_file}...")

    cmd = [
        "meme",
        fasta_file,
        f"-{alphabet}",
        "-oc",
        meme_dir,
        "-mod",
        mod,
        "-nmotifs",
        str(nmotifs),
        "-minw",
        str(minw),
        "-maxw",
        str(maxw),
        "-nostatus",
    ]
    if revcomp and alphabet == "dna":
        cmd.append("-revcomp")

    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        sys.stderr.write(f"Failed to run MEME: {e.stderr}\n")
        sys.exit(1)

    return read_meme_output(meme_dir)


def read_meme_output(meme_dir: str) -> Dict[str, motifs.Motif]:
    """Read the motifs reported in ``meme.txt`` of a MEME output directory."""

    report = os.path.join(meme_dir, "meme.txt")
    with open(report) as handle:
        record = motifs.parse(handle, "meme")

    print(f"Read {len(record)} motifs from {report}")
    return index_motifs(record)
