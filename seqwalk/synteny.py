"""
Synteny block detection, block alignment and export for seqwalk.

Homologous segments between genomes come from an all-against-all blastn
search. Collinear hits of each sequence pair are chained into blocks;
aligning a block keeps the blastn alignments of its hits and aligns only
the sequence between consecutive hits.
"""

from __future__ import annotations

import itertools
import os
import subprocess
import sys

import pandas as pd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from Bio import Align, SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .features import reverse_complement


BLAST_COLUMNS = [
    "qseqid", "sseqid", "pident", "length", "qstart", "qend",
    "sstart", "send", "evalue", "bitscore", "qseq", "sseq",
]

BLOCK_COLUMNS = [
    "query", "query_start", "query_end", "subject", "subject_start",
    "subject_end", "strand", "n_anchors", "anchored_bases",
]


@dataclass
class Anchor:
    """One blastn hit inside a block.

    Coordinates are 0-based and half-open. Subject coordinates are on the
    strand of the block, i.e. on the reverse complement for ``"-"`` blocks.
    """

    query_start: int
    query_end: int
    subject_start: int
    subject_end: int
    query_aligned: str
    subject_aligned: str


@dataclass
class SyntenyBlock:
    """A collinear region shared by two sequences.

    Coordinates are 0-based and half-open on the forward strand of each
    parent sequence. For ``strand == "-"`` the subject interval is read on
    the reverse strand and anchors carry reverse-strand subject positions.
    """

    query: str
    subject: str
    query_start: int
    query_end: int
    subject_start: int
    subject_end: int
    strand: str
    anchors: List[Anchor] = field(default_factory=list, repr=False)

    @property
    def query_length(self) -> int:
        return self.query_end - self.query_start

    @property
    def subject_length(self) -> int:
        return self.subject_end - self.subject_start

    @property
    def anchored_bases(self) -> int:
        return sum(a.query_end - a.query_start for a in self.anchors)


@dataclass
class AlignedBlock:
    block: SyntenyBlock
    query_aligned: str
    subject_aligned: str


def build_sequence_db(fasta_file: str, db_path: str):
    """Materialise the sequences of a FASTA file in an on-disk SQLite index.

    Parameters
    ----------
    fasta_file : str
        FASTA file with two or more (genome) sequences.
    db_path : str
        Path of the SQLite index; an existing index for the same file is reused.

    Returns
    -------
    Bio.File._SQLiteManySeqFilesDict
        Read-only mapping of sequence name -> SeqRecord.
    """

    db_dir = os.path.dirname(os.path.abspath(db_path))
    os.makedirs(db_dir, exist_ok=True)

    db = SeqIO.index_db(db_path, fasta_file, "fasta")
    print(f"Indexed {len(db)} sequences from {fasta_file} into {db_path}")
    return db


def run_blastn(
        fasta_file: str,
        output_dir: str,
        word_size: int = 28,
        evalue: float = 1e-10,
    ) -> str:
    """Search every sequence of a FASTA file against every other with blastn.

    Parameters
    ----------
    fasta_file : str
        FASTA file with two or more (genome) sequences
    output_dir : str
        Directory for output files
    word_size : int
        blastn seed length (default: 28, the megablast default)
    evalue : float
        E-value threshold

    Returns
    -------
    str
        Path to the tabular hits (columns of `BLAST_COLUMNS`)
    """

    base_name = os.path.splitext(os.path.basename(fasta_file))[0]
    hits_file = os.path.join(output_dir, f"{base_name}_blastn.tsv")

    print(f"Running blastn all-against-all on {fasta_file}...")

    cmd = [
        "blastn",
        "-query",
        fasta_file,
        "-subject",
        fasta_file,
        "-outfmt",
        "6 " + " ".join(BLAST_COLUMNS),
        "-word_size",
        str(word_size),
        "-evalue",
        str(evalue),
        "-out",
        hits_file,
    ]

    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        sys.stderr.write(f"Failed to run blastn: {e.stderr}\n")
        sys.exit(1)

    print(f"blastn hits saved to {hits_file}")
    return hits_file


def read_blast_hits(path: str) -> pd.DataFrame:
    """Read a blastn table written by `run_blastn`."""

    if os.path.getsize(path) == 0:
        return pd.DataFrame(columns=BLAST_COLUMNS)

    hits = pd.read_csv(path, sep="\t", header=None, names=BLAST_COLUMNS)
    for col in ("qseqid", "sseqid"):
        hits[col] = hits[col].astype(str).str.replace(r"^lcl\|", "", regex=True)
    return hits


def hits_to_anchors(
        hits: pd.DataFrame,
        query: str,
        subject: str,
        subject_length: int,
    ) -> Dict[str, List[Anchor]]:
    """Turn the blastn hits of one query/subject pair into anchors per strand.

    blastn reports minus-strand hits with ``sstart > send`` and ``sseq``
    already reverse complemented, so their subject coordinates are moved to
    the reverse strand here.
    """

    pair = hits[(hits["qseqid"] == query) & (hits["sseqid"] == subject)]
    anchors: Dict[str, List[Anchor]] = {"+": [], "-": []}

    for row in pair.itertuples(index=False):
        if row.sstart <= row.send:
            strand = "+"
            s_start, s_end = row.sstart - 1, row.send
        else:
            strand = "-"
            s_start, s_end = subject_length - row.sstart, subject_length - row.send + 1
        anchors[strand].append(Anchor(
            query_start=int(row.qstart) - 1,
            query_end=int(row.qend),
            subject_start=int(s_start),
            subject_end=int(s_end),
            query_aligned=str(row.qseq).upper(),
            subject_aligned=str(row.sseq).upper(),
        ))

    return anchors


def chain_anchors(anchors: Sequence[Anchor], max_gap: int = 500) -> List[List[Anchor]]:
    """Greedily chain anchors into collinear, non-overlapping runs.

    An anchor extends the chain whose last anchor it follows with the
    smallest combined gap, as long as neither gap exceeds ``max_gap``.
    Anchors overlapping every chain end start a chain of their own.
    """

    chains: List[List[Anchor]] = []

    for a in sorted(anchors, key=lambda x: (x.query_start, x.subject_start)):
        best = None
        best_gap = None

        for chain in chains:
            last = chain[-1]
            gap_q = a.query_start - last.query_end
            gap_s = a.subject_start - last.subject_end
            if gap_q < 0 or gap_s < 0 or max(gap_q, gap_s) > max_gap:
                continue
            if best_gap is None or gap_q + gap_s < best_gap:
                best, best_gap = chain, gap_q + gap_s

        if best is None:
            chains.append([a])
        else:
            best.append(a)

    return chains


def _blocks_for_pair(
        query_id: str,
        subject_id: str,
        subject_length: int,
        hits: pd.DataFrame,
        max_gap: int,
        min_anchors: int,
        min_length: int,
        both_strands: bool,
    ) -> List[SyntenyBlock]:
    blocks = []
    by_strand = hits_to_anchors(hits, query_id, subject_id, subject_length)
    strands = ["+", "-"] if both_strands else ["+"]

    for strand in strands:
        for chain in chain_anchors(by_strand[strand], max_gap=max_gap):
            q_start = chain[0].query_start
            q_end = chain[-1].query_end
            s_start = chain[0].subject_start
            s_end = chain[-1].subject_end
            if len(chain) < min_anchors or q_end - q_start < min_length:
                continue
            if strand == "-":
                s_start, s_end = subject_length - s_end, subject_length - s_start
            blocks.append(SyntenyBlock(
                query=query_id,
                subject=subject_id,
                query_start=q_start,
                query_end=q_end,
                subject_start=s_start,
                subject_end=s_end,
                strand=strand,
                anchors=list(chain),
            ))

    blocks.sort(key=lambda b: (b.query_start, b.subject_start))
    return blocks


def find_synteny(
        db: Mapping[str, SeqRecord],
        hits: pd.DataFrame,
        max_gap: int = 500,
        min_anchors: int = 1,
        min_length: int = 100,
        both_strands: bool = True,
    ) -> List[SyntenyBlock]:
    """Detect synteny blocks between every pair of sequences in a database.

    Parameters
    ----------
    db : mapping
        Sequence name -> SeqRecord (e.g. from `build_sequence_db`).
    hits : pandas.DataFrame
        blastn hits between the sequences of ``db`` (`read_blast_hits`).
    max_gap : int
        Largest gap allowed between chained hits (default: 500).
    min_anchors : int
        Fewest hits a block must contain (default: 1).
    min_length : int
        Shortest query span a block may cover (default: 100).
    both_strands : bool
        Also report inverted blocks.

    Returns
    -------
    list of SyntenyBlock
    """

    names = list(db.keys())
    if len(names) < 2:
        raise ValueError("Synteny detection needs at least two sequences")

    blocks = []
    for query_id, subject_id in itertools.combinations(names, 2):
        pair_blocks = _blocks_for_pair(
            query_id, subject_id, len(db[subject_id].seq), hits,
            max_gap, min_anchors, min_length, both_strands,
        )
        print(f"Found {len(pair_blocks)} synteny blocks between {query_id} and {subject_id}")
        blocks.extend(pair_blocks)

    return blocks


def synteny_frame(blocks: Sequence[SyntenyBlock]) -> pd.DataFrame:
    """Tabulate synteny blocks."""

    rows = [
        {
            "query": b.query,
            "query_start": b.query_start,
            "query_end": b.query_end,
            "subject": b.subject,
            "subject_start": b.subject_start,
            "subject_end": b.subject_end,
            "strand": b.strand,
            "n_anchors": len(b.anchors),
            "anchored_bases": b.anchored_bases,
        }
        for b in blocks
    ]
    return pd.DataFrame(rows, columns=BLOCK_COLUMNS)


def _default_aligner() -> Align.PairwiseAligner:
    aligner = Align.PairwiseAligner()
    aligner.mode = "global"
    aligner.match_score = 2
    aligner.mismatch_score = -1
    aligner.open_gap_score = -5
    aligner.extend_gap_score = -0.5
    return aligner


def _align_gap(query: str, subject: str, aligner: Align.PairwiseAligner) -> Tuple[str, str]:
    if not query and not subject:
        return "", ""
    if not query:
        return "-" * len(subject), subject
    if not subject:
        return query, "-" * len(query)
    best = aligner.align(query, subject)[0]
    return best[0], best[1]


def align_block(
        query: str,
        subject: str,
        block: SyntenyBlock,
        aligner: Optional[Align.PairwiseAligner] = None,
    ) -> AlignedBlock:
    """Align one block; ``subject`` is the full forward-strand subject sequence."""

    aligner = aligner or _default_aligner()
    oriented = subject if block.strand == "+" else reverse_complement(subject)

    q_parts, s_parts = [], []
    prev_q, prev_s = block.anchors[0].query_start, block.anchors[0].subject_start
    for a in block.anchors:
        gap_q, gap_s = _align_gap(query[prev_q:a.query_start], oriented[prev_s:a.subject_start], aligner)
        q_parts.extend([gap_q, a.query_aligned])
        s_parts.extend([gap_s, a.subject_aligned])
        prev_q, prev_s = a.query_end, a.subject_end

    return AlignedBlock(block=block, query_aligned="".join(q_parts), subject_aligned="".join(s_parts))


def align_synteny(
        db: Mapping[str, SeqRecord],
        blocks: Sequence[SyntenyBlock],
        aligner: Optional[Align.PairwiseAligner] = None,
    ) -> List[AlignedBlock]:
    """Align every synteny block against its parent sequences."""

    aligner = aligner or _default_aligner()
    cache: Dict[str, str] = {}

    def _seq(name: str) -> str:
        if name not in cache:
            cache[name] = str(db[name].seq).upper()
        return cache[name]

    aligned = [align_block(_seq(b.query), _seq(b.subject), b, aligner) for b in blocks]
    print(f"Aligned {len(aligned)} synteny blocks")
    return aligned


def export_blocks(aligned: Sequence[AlignedBlock], path: str, member: str = "query") -> str:
    """Write one aligned sequence per block to a FASTA file.

    Parameters
    ----------
    aligned : sequence of AlignedBlock
        Output of `align_synteny`.
    path : str
        Output FASTA path.
    member : str
        Which row of each block to export: "query" or "subject".
    """

    if member not in ("query", "subject"):
        raise ValueError("member must be 'query' or 'subject'")

    records = []
    for i, ab in enumerate(aligned, start=1):
        b = ab.block
        if member == "query":
            name, start, end, seq = b.query, b.query_start, b.query_end, ab.query_aligned
        else:
            name, start, end, seq = b.subject, b.subject_start, b.subject_end, ab.subject_aligned
        records.append(SeqRecord(
            Seq(seq),
            id=f"block{i}_{name}",
            description=f"{name}:{start + 1}-{end} strand={b.strand} pair={b.query}|{b.subject}",
        ))

    SeqIO.write(records, path, "fasta")
    print(f"Wrote {len(records)} aligned blocks to {path}")
    return path


def plot_synteny(blocks: Sequence[SyntenyBlock], path: str, query: str, subject: str) -> str:
    """Dot plot of the blocks shared by one pair of sequences."""

    fig, ax = plt.subplots(figsize=(6, 6))
    for b in blocks:
        if b.query != query or b.subject != subject:
            continue
        if b.strand == "+":
            ys = (b.subject_start, b.subject_end)
            colour = "tab:blue"
        else:
            ys = (b.subject_end, b.subject_start)
            colour = "tab:red"
        ax.plot((b.query_start, b.query_end), ys, color=colour, linewidth=2)

    ax.set_xlabel(query)
    ax.set_ylabel(subject)
    ax.set_title("Synteny blocks")
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)

    print(f"Synteny plot saved to {path}")
    return path
