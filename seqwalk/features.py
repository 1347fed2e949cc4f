"""
Motif scanning of sequence sets using position weight matrices.
"""

import numpy as np
import pandas as pd

from Bio import motifs
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord
from Bio.motifs.matrix import PositionSpecificScoringMatrix
from typing import Dict, Iterable, List, Optional, Tuple


HIT_COLUMNS = ["seq_id", "motif", "start", "end", "strand", "score", "matched"]

# Caches
_PWM_CACHE: Dict[Tuple[Tuple[Tuple[float, ...], ...], float], PositionSpecificScoringMatrix] = {}


def reverse_complement(seq: str) -> str:
    """Return the reverse complement of a DNA sequence.

    Parameters
    ----------
    seq : str
        Input DNA sequence.

    Returns
    -------
    str
        Reverse complement of the input sequence.
    """

    return str(Seq(seq).reverse_complement())


def _motif_signature(motif: motifs.Motif) -> Tuple[Tuple[float, ...], ...]:
    """Create a hashable signature of a motif's counts for caching."""

    return tuple(tuple(float(x) for x in motif.counts[base]) for base in "ACGT")


def get_log_odds(motif: motifs.Motif, pseudocounts: float = 0.1) -> PositionSpecificScoringMatrix:
    """Get or compute the log-odds PWM for a motif, with caching.

    Parameters
    ----------
    motif : Bio.motifs.Motif
        Motif object.
    pseudocounts : float
        For PWM normalization.

    Returns
    -------
    Bio.motifs.matrix.PositionSpecificScoringMatrix
        Log-odds PWM.
    """

    key = (_motif_signature(motif), float(pseudocounts))
    pwm = _PWM_CACHE.get(key)

    if pwm is None:
        pwm = motif.counts.normalize(pseudocounts=pseudocounts).log_odds()
        _PWM_CACHE[key] = pwm

    return pwm


def score_cutoff(
        pwm: PositionSpecificScoringMatrix,
        threshold: Optional[float] = None,
        pvalue: Optional[float] = None,
    ) -> float:
    """Resolve the score cutoff for a scan.

    An explicit ``threshold`` wins. Otherwise ``pvalue`` is turned into a
    score through the PWM's score distribution under a uniform background,
    and without either the cutoff is 80% of the maximum score.
    """

    if threshold is not None:
        return float(threshold)
    if pvalue is not None:
        if not 0 < pvalue < 1:
            raise ValueError("pvalue must lie in (0, 1)")
        return float(pwm.distribution(precision=10**3).threshold_fpr(pvalue))
    return 0.8 * pwm.max


def _window_scores(pwm: PositionSpecificScoringMatrix, sequence: str) -> np.ndarray:
    """Score every window of ``sequence``; windows with non-ACGT letters are NaN."""

    if len(sequence) < pwm.length:
        return np.empty(0)
    return np.atleast_1d(np.asarray(pwm.calculate(Seq(sequence)), dtype=float))


def search_motif(
        sequence: str,
        pwm: PositionSpecificScoringMatrix,
        cutoff: float,
        both_strands: bool = True,
    ) -> List[Dict]:
    """Find all windows of a sequence scoring at or above ``cutoff``.

    Parameters
    ----------
    sequence : str
        DNA sequence.
    pwm : PositionSpecificScoringMatrix
        Log-odds matrix of the motif.
    cutoff : float
        Minimum score.
    both_strands : bool
        Also scan the reverse strand.

    Returns
    -------
    list of dict
        Each dict contains start, end, strand, score and matched (the site as
        read on its own strand). Coordinates are 0-based on the forward strand.
    """

    sequence = sequence.upper()
    length = pwm.length
    strands = [("+", pwm)]
    if both_strands:
        strands.append(("-", pwm.reverse_complement()))

    hits = []
    for strand, matrix in strands:
        scores = _window_scores(matrix, sequence)
        for pos in np.flatnonzero(scores >= cutoff):
            pos = int(pos)
            site = sequence[pos:pos + length]
            hits.append({
                "start": pos,
                "end": pos + length,
                "strand": strand,
                "score": float(scores[pos]),
                "matched": site if strand == "+" else reverse_complement(site),
            })

    hits.sort(key=lambda h: (h["start"], h["strand"]))
    return hits


def scan_sequences(
        records: Iterable[SeqRecord],
        motif: motifs.Motif,
        threshold: Optional[float] = None,
        pvalue: Optional[float] = None,
        pseudocounts: float = 0.1,
        both_strands: bool = True,
    ) -> pd.DataFrame:
    """Scan a sequence set for occurrences of a motif.

    Parameters
    ----------
    records : iterable of SeqRecord
        Sequence set (e.g. promoters) to scan.
    motif : Bio.motifs.Motif
        Motif to search for.
    threshold : float, optional
        Minimum log-odds score.
    pvalue : float, optional
        Per-window false positive rate used when no threshold is given.
    pseudocounts : float
        For PWM normalization.
    both_strands : bool
        Also report reverse-strand sites.

    Returns
    -------
    pandas.DataFrame
        One row per hit with columns seq_id, motif, start, end, strand,
        score, matched.
    """

    pwm = get_log_odds(motif, pseudocounts)
    cutoff = score_cutoff(pwm, threshold, pvalue)

    rows = []
    for record in records:
        for hit in search_motif(str(record.seq), pwm, cutoff, both_strands):
            rows.append({"seq_id": record.id, "motif": motif.name, **hit})

    return pd.DataFrame(rows, columns=HIT_COLUMNS)
