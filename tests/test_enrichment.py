import os
import subprocess

import numpy as np
import pytest

from collections import Counter
from unittest.mock import patch, MagicMock
from Bio import SeqIO

from seqwalk.discovery import run_meme
from seqwalk.enrichment import enrichment_table, markov_shuffle, motif_enrichment, shuffle_records
from seqwalk.motifdb import load_motifs


class TestMarkovShuffle:
    """Background generation."""

    def test_length_and_prefix_preserved(self):
        rng = np.random.default_rng(0)
        seq = "ACGTTGCAAGGCTTACGATCGATCGGATC"
        shuffled = markov_shuffle(seq, k=3, rng=rng)

        assert len(shuffled) == len(seq)
        assert shuffled[:2] == seq[:2]
        assert set(shuffled) <= set(seq)

    def test_deterministic_chain_reproduces_sequence(self):
        """Every trinucleotide context has one successor, so the chain is forced."""
        assert markov_shuffle("ACGTACGTACGT", k=3) == "ACGTACGTACGT"

    def test_same_seed_same_background(self, promoter_file):
        records = list(SeqIO.parse(promoter_file, "fasta"))
        first = shuffle_records(records, k=3, seed=5)
        second = shuffle_records(records, k=3, seed=5)

        assert [str(r.seq) for r in first] == [str(r.seq) for r in second]

    def test_k1_keeps_composition_alphabet(self):
        shuffled = markov_shuffle("AAAACCCC", k=1, rng=np.random.default_rng(1))
        assert len(shuffled) == 8
        assert set(Counter(shuffled)) <= {"A", "C"}

    def test_invalid_k(self):
        with pytest.raises(ValueError):
            markov_shuffle("ACGT", k=0)

    def test_n_shuffles_multiplies_background(self, promoter_file):
        records = list(SeqIO.parse(promoter_file, "fasta"))
        background = shuffle_records(records, n_shuffles=3, seed=1)

        assert len(background) == 3 * len(records)
        assert background[0].id.endswith("_shuf1")


class TestEnrichment:
    """Motif enrichment against shuffled sequences."""

    def test_planted_motif_is_enriched(self, motif_file, promoter_file):
        records = list(SeqIO.parse(promoter_file, "fasta"))
        motif = load_motifs(motif_file)["TestTF"]

        result = motif_enrichment(records, motif, k=3, n_shuffles=3, seed=42)

        assert result.target_hits == len(records)
        assert result.target_total == len(records)
        assert result.background_total == 3 * len(records)
        assert result.background_fraction < result.target_fraction
        assert result.pvalue < 0.05
        assert result.target_fraction == 1.0

    def test_explicit_background(self, motif_file, promoter_file):
        records = list(SeqIO.parse(promoter_file, "fasta"))
        motif = load_motifs(motif_file)["TestTF"]

        result = motif_enrichment(records, motif, background=records)

        assert result.background_hits == result.target_hits
        assert result.pvalue == pytest.approx(1.0)

    def test_enrichment_table(self, motif_file, promoter_file):
        records = list(SeqIO.parse(promoter_file, "fasta"))
        motif_dict = load_motifs(motif_file)

        table = enrichment_table(records, motif_dict, seed=1)

        assert list(table["motif"]) == ["TestTF"]
        assert {"pvalue", "odds_ratio", "target_fraction", "background_fraction"} <= set(table.columns)


class TestMeme:
    """MEME invocation."""

    @patch("seqwalk.discovery.read_meme_output")
    @patch("subprocess.run")
    def test_run_meme_command(self, mock_run, mock_read, promoter_file, temp_dir):
        mock_run.return_value = MagicMock()
        mock_read.return_value = {"MEME-1": MagicMock()}

        result = run_meme(promoter_file, temp_dir, nmotifs=2)

        mock_run.assert_called_once()
        call_args = mock_run.call_args[0][0]
        assert call_args[0] == "meme"
        assert call_args[1] == promoter_file
        assert "-dna" in call_args
        assert "-revcomp" in call_args
        assert call_args[call_args.index("-nmotifs") + 1] == "2"
        assert call_args[call_args.index("-oc") + 1] == os.path.join(temp_dir, "meme_out")
        mock_read.assert_called_once_with(os.path.join(temp_dir, "meme_out"))
        assert result == mock_read.return_value

    @patch("subprocess.run")
    def test_protein_run_has_no_revcomp(self, mock_run, sample_protein_file, temp_dir):
        with patch("seqwalk.discovery.read_meme_output", return_value={}):
            run_meme(sample_protein_file, temp_dir, alphabet="protein")

        call_args = mock_run.call_args[0][0]
        assert "-protein" in call_args
        assert "-revcomp" not in call_args

    @patch("subprocess.run")
    def test_run_meme_failure(self, mock_run, promoter_file, temp_dir):
        mock_run.side_effect = subprocess.CalledProcessError(1, "meme", stderr="bad input")

        with pytest.raises(SystemExit):
            run_meme(promoter_file, temp_dir)

    def test_invalid_model(self, promoter_file, temp_dir):
        with pytest.raises(ValueError):
            run_meme(promoter_file, temp_dir, mod="tcm")
