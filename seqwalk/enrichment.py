"""
Motif enrichment against a shuffled background for seqwalk.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from Bio import motifs
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord
from collections import Counter, defaultdict
from dataclasses import dataclass, asdict
from scipy.stats import fisher_exact
from typing import Dict, List, Mapping, Optional, Sequence

from .features import get_log_odds, score_cutoff, search_motif


@dataclass
class EnrichmentResult:
    """Hit counts of one motif in the target and background sets."""

    motif: str
    target_hits: int
    target_total: int
    background_hits: int
    background_total: int
    odds_ratio: float
    pvalue: float

    @property
    def target_fraction(self) -> float:
        return self.target_hits / self.target_total if self.target_total else 0.0

    @property
    def background_fraction(self) -> float:
        return self.background_hits / self.background_total if self.background_total else 0.0


def markov_shuffle(seq: str, k: int = 3, rng: Optional[np.random.Generator] = None) -> str:
    """Generate a background sequence preserving k-mer composition in expectation.

    Letters are drawn from the order ``k - 1`` Markov chain estimated on
    ``seq`` itself. The first ``k - 1`` letters are kept; contexts never
    followed by a letter in ``seq`` fall back to the letter frequencies.

    Parameters
    ----------
    seq : str
        Input sequence.
    k : int
        Size of the preserved k-mers (k=3 keeps dinucleotide transitions
        conditioned on the previous two letters).
    rng : numpy.random.Generator, optional
        Random source.

    Returns
    -------
    str
        Shuffled sequence of the same length.
    """

    if k < 1:
        raise ValueError("k must be at least 1")

    rng = rng if rng is not None else np.random.default_rng()
    seq = seq.upper()
    order = k - 1

    if len(seq) <= order:
        return seq

    transitions: Dict[str, Counter] = defaultdict(Counter)
    for i in range(order, len(seq)):
        transitions[seq[i - order:i]][seq[i]] += 1

    composition = Counter(seq)
    fallback = (list(composition), np.array(list(composition.values()), dtype=float))

    out = list(seq[:order])
    for _ in range(len(seq) - order):
        context = "".join(out[len(out) - order:]) if order else ""
        counter = transitions.get(context)
        if counter:
            letters, weights = list(counter), np.array(list(counter.values()), dtype=float)
        else:
            letters, weights = fallback
        out.append(letters[rng.choice(len(letters), p=weights / weights.sum())])

    return "".join(out)


def shuffle_records(
        records: Sequence[SeqRecord],
        k: int = 3,
        n_shuffles: int = 1,
        seed: Optional[int] = None,
    ) -> List[SeqRecord]:
    """Build a background set with ``n_shuffles`` shuffled copies of each record."""

    rng = np.random.default_rng(seed)
    background = []
    for n in range(n_shuffles):
        for record in records:
            shuffled = markov_shuffle(str(record.seq), k=k, rng=rng)
            background.append(SeqRecord(Seq(shuffled), id=f"{record.id}_shuf{n + 1}", description=""))
    return background


def _count_sequences_with_hits(records, pwm, cutoff, both_strands) -> int:
    return sum(1 for r in records if search_motif(str(r.seq), pwm, cutoff, both_strands))


def motif_enrichment(
        records: Sequence[SeqRecord],
        motif: motifs.Motif,
        background: Optional[Sequence[SeqRecord]] = None,
        k: int = 3,
        n_shuffles: int = 1,
        seed: Optional[int] = None,
        threshold: Optional[float] = None,
        pvalue: Optional[float] = None,
        pseudocounts: float = 0.1,
        both_strands: bool = True,
    ) -> EnrichmentResult:
    """Test whether a motif is over-represented relative to a background.

    Parameters
    ----------
    records : sequence of SeqRecord
        Target sequence set.
    motif : Bio.motifs.Motif
        Motif to test.
    background : sequence of SeqRecord, optional
        Background set; by default ``records`` shuffled with `shuffle_records`.
    k : int
        k-mer size preserved by the shuffle (default: 3).
    n_shuffles : int
        Shuffled copies of each target sequence.
    seed : int, optional
        Seed for the shuffle.
    threshold, pvalue, pseudocounts, both_strands
        Scan settings, see `seqwalk.features.scan_sequences`.

    Returns
    -------
    EnrichmentResult
        Counts of sequences with at least one hit and the one-sided Fisher
        exact test.
    """

    if background is None:
        background = shuffle_records(records, k=k, n_shuffles=n_shuffles, seed=seed)

    pwm = get_log_odds(motif, pseudocounts)
    cutoff = score_cutoff(pwm, threshold, pvalue)

    target_hits = _count_sequences_with_hits(records, pwm, cutoff, both_strands)
    background_hits = _count_sequences_with_hits(background, pwm, cutoff, both_strands)

    table = [
        [target_hits, len(records) - target_hits],
        [background_hits, len(background) - background_hits],
    ]
    odds_ratio, p = fisher_exact(table, alternative="greater")

    return EnrichmentResult(
        motif=motif.name,
        target_hits=target_hits,
        target_total=len(records),
        background_hits=background_hits,
        background_total=len(background),
        odds_ratio=float(odds_ratio),
        pvalue=float(p),
    )


def enrichment_table(
        records: Sequence[SeqRecord],
        motif_dict: Mapping[str, motifs.Motif],
        k: int = 3,
        n_shuffles: int = 1,
        seed: Optional[int] = None,
        **scan_kwargs,
    ) -> pd.DataFrame:
    """Run `motif_enrichment` for every motif against one shared background.

    Returns
    -------
    pandas.DataFrame
        One row per motif, sorted by p-value.
    """

    background = shuffle_records(records, k=k, n_shuffles=n_shuffles, seed=seed)

    rows = []
    for motif in motif_dict.values():
        result = motif_enrichment(records, motif, background=background, **scan_kwargs)
        rows.append({
            **asdict(result),
            "target_fraction": result.target_fraction,
            "background_fraction": result.background_fraction,
        })

    table = pd.DataFrame(rows)
    if not table.empty:
        table = table.sort_values("pvalue").reset_index(drop=True)
    return table
