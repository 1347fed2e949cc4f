import math
import os
import sys
import pytest
import tempfile
import shutil

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


MOTIF_PATTERN = "ACCGGTTA"


def pytest_configure(config):
    config.addinivalue_line("markers", "online: tests that query live web services")


def _random_dna(rng, n):
    return "".join(rng.choice(list("ACGT"), size=n))


def write_ca_pdb(path, coords, chain="A", resnames=None):
    """Write a CA-only PDB file with one residue per coordinate."""
    resnames = resnames or ["ALA", "GLY", "LEU", "LYS", "GLU", "SER", "TRP", "PHE", "ASP", "VAL"]
    with open(path, "w") as f:
        for i, (x, y, z) in enumerate(coords, start=1):
            resname = resnames[(i - 1) % len(resnames)]
            f.write(
                f"ATOM  {i:5d}  CA  {resname} {chain}{i:4d}    "
                f"{x:8.3f}{y:8.3f}{z:8.3f}{1.0:6.2f}{0.0:6.2f}           C\n"
            )
        f.write("END\n")
    return path


def write_blast_hits(path, rows):
    """Write rows of (qseqid, sseqid, qstart, qend, sstart, send, qseq, sseq) as a blastn table."""
    with open(path, "w") as f:
        for q, s, qstart, qend, sstart, send, qseq, sseq in rows:
            length = len(qseq)
            pident = 100.0 * sum(a == b for a, b in zip(qseq, sseq)) / length
            f.write(
                f"{q}\t{s}\t{pident:.3f}\t{length}\t{qstart}\t{qend}\t{sstart}\t{send}"
                f"\t0.0\t{2 * length}\t{qseq}\t{sseq}\n"
            )
    return path


def shared_block_hits(genome_a, genome_b):
    """blastn hits of the block shared by the `genome_pair` genomes, plus self hits."""
    return [
        ("genomeA", "genomeA", 1, len(genome_a), 1, len(genome_a), genome_a, genome_a),
        ("genomeA", "genomeB", 1, 500, 151, 650, genome_a[:500], genome_b[150:650]),
        ("genomeA", "genomeB", 501, 1000, 681, 1180, genome_a[500:1000], genome_b[680:1180]),
        ("genomeB", "genomeB", 1, len(genome_b), 1, len(genome_b), genome_b, genome_b),
    ]


def helix_coords(n=10):
    return [
        (2.3 * math.cos(math.radians(100 * i)), 2.3 * math.sin(math.radians(100 * i)), 1.5 * i)
        for i in range(n)
    ]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir)


@pytest.fixture
def motif_file(temp_dir):
    """JASPAR-format file with a single fixed-pattern motif."""
    motif_file = os.path.join(temp_dir, "motif.jaspar")
    with open(motif_file, "w") as f:
        f.write(">MA9999.1 TestTF\n")
        for base in "ACGT":
            row = " ".join("10" if c == base else "0" for c in MOTIF_PATTERN)
            f.write(f"{base} [ {row} ]\n")
    return motif_file


@pytest.fixture
def promoter_file(temp_dir):
    """FASTA file of promoters that each carry the test motif once."""
    rng = np.random.default_rng(7)
    promoter_file = os.path.join(temp_dir, "promoters.fasta")
    with open(promoter_file, "w") as f:
        for i in range(10):
            seq = _random_dna(rng, 20) + MOTIF_PATTERN + _random_dna(rng, 32)
            f.write(f">promoter_{i + 1}\n{seq}\n")
    return promoter_file


@pytest.fixture
def sample_protein_file(temp_dir):
    """Create a sample protein FASTA file for testing."""
    protein_file = os.path.join(temp_dir, "test_proteins.faa")
    with open(protein_file, 'w') as f:
        f.write(">test_protein_1\n")
        f.write("MKRLLAISLLLAVVTSLLAAPYVKA\n")
        f.write(">test_protein_2\n")
        f.write("MATAIGDRSTLTA\n")
        f.write(">test_protein_3\n")
        f.write("MKRLLAISLLAAVVTSLLAAPYAKA\n")
    return protein_file


@pytest.fixture
def labelled_proteins():
    """Separable two-class protein set: basic (1) versus acidic (-1) sequences."""
    rng = np.random.default_rng(3)
    seqs, labels = [], []
    for i in range(40):
        if i % 2 == 0:
            seqs.append("".join(rng.choice(list("KRKHAG"), size=30)))
            labels.append(1)
        else:
            seqs.append("".join(rng.choice(list("DEDSAG"), size=30)))
            labels.append(-1)
    return seqs, np.array(labels)


@pytest.fixture
def labelled_protein_files(temp_dir, labelled_proteins):
    seqs, labels = labelled_proteins
    fasta = os.path.join(temp_dir, "labelled.faa")
    label_file = os.path.join(temp_dir, "labels.txt")
    with open(fasta, "w") as f:
        for i, seq in enumerate(seqs):
            f.write(f">prot{i}\n{seq}\n")
    with open(label_file, "w") as f:
        f.write("\n".join(str(label) for label in labels) + "\n")
    return fasta, label_file


@pytest.fixture
def genome_pair():
    """Two genomes sharing one long collinear block (with SNPs and an insertion)."""
    rng = np.random.default_rng(11)
    genome_a = _random_dna(rng, 1200)
    shared = list(genome_a[:1000])
    for pos in (100, 250, 700, 850):
        shared[pos] = {"A": "C", "C": "G", "G": "T", "T": "A"}[shared[pos]]
    shared = "".join(shared)
    genome_b = _random_dna(rng, 150) + shared[:500] + _random_dna(rng, 30) + shared[500:] + _random_dna(rng, 150)
    return genome_a, genome_b


@pytest.fixture
def genome_file(temp_dir, genome_pair):
    genome_a, genome_b = genome_pair
    genome_file = os.path.join(temp_dir, "genomes.fasta")
    with open(genome_file, "w") as f:
        f.write(f">genomeA\n{genome_a}\n>genomeB\n{genome_b}\n")
    return genome_file


@pytest.fixture
def pdb_file(temp_dir):
    return write_ca_pdb(os.path.join(temp_dir, "fixed.pdb"), helix_coords())


@pytest.fixture
def rotated_pdb_file(temp_dir):
    """The same CA trace rotated 90 degrees about z and shifted."""
    coords = [(-y + 5.0, x - 3.0, z + 1.0) for x, y, z in helix_coords()]
    return write_ca_pdb(os.path.join(temp_dir, "moving.pdb"), coords)


@pytest.fixture
def annotation_files(temp_dir):
    """Local annotation table and a headerless Pfam-A.clans.tsv."""
    annotation = os.path.join(temp_dir, "annotation.tsv")
    with open(annotation, "w") as f:
        f.write("ENSEMBL\tSYMBOL\tENTREZID\tPFAM\n")
        f.write("ENSG00000141510\tTP53\t7157\tPF00870;PF07710;PF08563\n")
        f.write("ENSG00000012048\tBRCA1\t672\tPF00097;PF00533\n")
        f.write("ENSG00000146648\tEGFR\t1956\tPF99999\n")
        f.write("ENSG00000000003\tTSPAN6\t7105\t\n")

    pfam = os.path.join(temp_dir, "Pfam-A.clans.tsv")
    with open(pfam, "w") as f:
        f.write("PF00870\tCL0073\tP53-like\tP53\tP53 DNA-binding domain\n")
        f.write("PF07710\t\t\tP53_tetramer\tP53 tetramerisation motif\n")
        f.write("PF08563\t\t\tP53_TAD\tP53 transactivation motif\n")
        f.write("PF00097\tCL0229\tRING\tzf-C3HC4\tZinc finger, C3HC4 type (RING finger)\n")
        f.write("PF00533\tCL0459\tBRCT-like\tBRCT\tBRCA1 C Terminus (BRCT) domain\n")
    return annotation, pfam
