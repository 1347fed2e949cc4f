import pandas as pd
import pytest

from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

import seqwalk.features as features_mod
from seqwalk.features import reverse_complement, scan_sequences, score_cutoff, search_motif, get_log_odds
from seqwalk.motifdb import load_motifs

from conftest import MOTIF_PATTERN


def _records(*seqs):
    return [SeqRecord(Seq(s), id=f"seq{i + 1}") for i, s in enumerate(seqs)]


def test_reverse_complement() -> None:
    assert reverse_complement("ACCGGTTA") == "TAACCGGT"


def test_scan_reports_planted_site_at_exact_offset(motif_file) -> None:
    """A single fixed-pattern motif is found at its known offset."""

    motif = load_motifs(motif_file)["TestTF"]
    seq = "T" * 10 + MOTIF_PATTERN + "C" * 10

    hits = scan_sequences(_records(seq), motif)

    assert len(hits) == 1
    hit = hits.iloc[0]
    assert hit["seq_id"] == "seq1"
    assert hit["start"] == 10
    assert hit["end"] == 10 + len(MOTIF_PATTERN)
    assert hit["strand"] == "+"
    assert hit["matched"] == MOTIF_PATTERN


def test_scan_reverse_strand_site(motif_file) -> None:
    """A site on the reverse strand reports its forward-strand start."""

    motif = load_motifs(motif_file)["TestTF"]
    seq = "G" * 5 + reverse_complement(MOTIF_PATTERN) + "G" * 5

    hits = scan_sequences(_records(seq), motif)

    assert list(hits["strand"]) == ["-"]
    assert hits.iloc[0]["start"] == 5
    assert hits.iloc[0]["matched"] == MOTIF_PATTERN

    forward_only = scan_sequences(_records(seq), motif, both_strands=False)
    assert forward_only.empty


def test_scan_is_deterministic(motif_file, promoter_file) -> None:
    motif = load_motifs(motif_file)["TestTF"]
    records = list(SeqIO.parse(promoter_file, "fasta"))

    first = scan_sequences(records, motif)
    second = scan_sequences(records, motif)

    pd.testing.assert_frame_equal(first, second)
    assert set(first["seq_id"]) == {r.id for r in records}
    assert (first[first["strand"] == "+"]["start"] == 20).all()


def test_scan_with_pvalue_threshold(motif_file) -> None:
    motif = load_motifs(motif_file)["TestTF"]
    seq = "T" * 10 + MOTIF_PATTERN + "C" * 10

    hits = scan_sequences(_records(seq), motif, pvalue=1e-4)

    assert 10 in set(hits["start"])


def test_explicit_threshold_overrides_default(motif_file) -> None:
    motif = load_motifs(motif_file)["TestTF"]
    seq = "T" * 10 + MOTIF_PATTERN + "C" * 10

    assert scan_sequences(_records(seq), motif, threshold=1e9).empty


def test_scan_skips_ambiguous_letters(motif_file) -> None:
    motif = load_motifs(motif_file)["TestTF"]
    seq = "ACCGNTTA" + "T" * 5

    assert scan_sequences(_records(seq), motif).empty


def test_short_sequence_has_no_hits(motif_file) -> None:
    motif = load_motifs(motif_file)["TestTF"]
    pwm = get_log_odds(motif)

    assert search_motif("ACG", pwm, cutoff=0.0) == []


def test_log_odds_are_cached(motif_file) -> None:
    features_mod._PWM_CACHE.clear()
    motif = load_motifs(motif_file)["TestTF"]

    first = get_log_odds(motif, 0.1)
    second = get_log_odds(motif, 0.1)

    assert first is second
    assert len(features_mod._PWM_CACHE) == 1


def test_invalid_pvalue_rejected(motif_file) -> None:
    motif = load_motifs(motif_file)["TestTF"]
    with pytest.raises(ValueError):
        scan_sequences(_records("ACGT" * 5), motif, pvalue=2.0)


def test_default_cutoff_is_fraction_of_best_score(motif_file) -> None:
    """Without threshold or p-value the cutoff is 80% of the best window score."""

    motif = load_motifs(motif_file)["TestTF"]
    pwm = get_log_odds(motif)

    assert score_cutoff(pwm) == pytest.approx(0.8 * pwm.max)
    assert score_cutoff(pwm, threshold=1.5) == 1.5

    hits = scan_sequences(_records("T" * 10 + MOTIF_PATTERN), motif)
    assert list(hits["start"]) == [10]
    assert hits.iloc[0]["score"] == pytest.approx(pwm.max)
