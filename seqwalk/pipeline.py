"""
Stage orchestration for seqwalk.

Each ``run_*_stage`` function reads its inputs, calls the library code of
one stage and writes its results into ``output_dir``.
"""

import os

import pandas as pd
from Bio import SeqIO
from typing import Dict, List, Optional, Sequence

from .dependencies import check_dependencies
from .motifdb import load_motifs
from .features import scan_sequences
from .enrichment import enrichment_table
from .discovery import run_meme
from .annotation import AnnotationDb, annotate_domains, load_pfam_descriptions
from .ensembl import BiomartClient, EnsemblRestClient
from .msa import (
    build_tree,
    distance_frame,
    distance_matrix,
    plot_alignment,
    plot_tree,
    run_clustalo,
    write_tree,
)
from .synteny import (
    align_synteny,
    build_sequence_db,
    export_blocks,
    find_synteny,
    plot_synteny,
    read_blast_hits,
    run_blastn,
    synteny_frame,
)
from .kernels import GappyPairKernel
from .classify import (
    evaluate,
    plot_profile,
    predict,
    prediction_profile,
    read_labels,
    train_classifier,
    train_test_split_indices,
)
from .structure import (
    align_structures,
    load_structure,
    render_pymol,
    save_structure,
    write_pymol_script,
)


def _write_table(df: pd.DataFrame, path: str) -> str:
    df.to_csv(path, sep="\t", index=False)
    print(f"Wrote {len(df)} rows to {path}")
    return path


def run_motif_stage(
        motif_file: str,
        fasta_file: str,
        output_dir: str,
        fmt: str = "jaspar",
        threshold: Optional[float] = None,
        pvalue: Optional[float] = None,
        k: int = 3,
        seed: Optional[int] = None,
        discover: bool = False,
        nmotifs: int = 3,
    ) -> Dict[str, str]:
    """Scan a sequence set for known motifs, test enrichment, optionally run MEME.

    Returns
    -------
    dict
        Paths of the hit table, the enrichment table and (with ``discover``)
        the MEME output directory.
    """

    os.makedirs(output_dir, exist_ok=True)
    records = list(SeqIO.parse(fasta_file, "fasta"))
    motif_dict = load_motifs(motif_file, fmt=fmt)
    print(f"Scanning {len(records)} sequences for {len(motif_dict)} motifs...")

    hits = pd.concat(
        [scan_sequences(records, m, threshold=threshold, pvalue=pvalue) for m in motif_dict.values()],
        ignore_index=True,
    )
    outputs = {"hits": _write_table(hits, os.path.join(output_dir, "motif_hits.tsv"))}

    enrichment = enrichment_table(records, motif_dict, k=k, seed=seed, threshold=threshold, pvalue=pvalue)
    outputs["enrichment"] = _write_table(enrichment, os.path.join(output_dir, "motif_enrichment.tsv"))

    if discover:
        check_dependencies(["meme"])
        discovered = run_meme(fasta_file, output_dir, nmotifs=nmotifs)
        print(f"MEME reported motifs: {', '.join(discovered)}")
        outputs["meme"] = os.path.join(output_dir, "meme_out")

    return outputs


def run_domain_stage(
        annotation_file: str,
        pfam_file: str,
        genes: Sequence[str],
        output_dir: str,
        keytype: str = "ENSEMBL",
    ) -> str:
    """Annotate genes with Pfam domains and descriptions from local tables."""

    os.makedirs(output_dir, exist_ok=True)
    db = AnnotationDb.from_file(annotation_file)
    descriptions = load_pfam_descriptions(pfam_file)
    table = annotate_domains(db, genes, descriptions, keytype=keytype)
    return _write_table(table, os.path.join(output_dir, "domains_local.tsv"))


def run_ensembl_stage(
        species: str,
        genes: Sequence[str],
        output_dir: str,
        keytype: str = "GENENAME",
        source: str = "Pfam",
        base_url: str = "https://rest.ensembl.org",
    ) -> str:
    """Retrieve protein domains of genes from the Ensembl REST API."""

    os.makedirs(output_dir, exist_ok=True)
    client = EnsemblRestClient(base_url=base_url)
    table = client.protein_domains(species, genes, keytype=keytype, source=source)
    return _write_table(table, os.path.join(output_dir, "domains_ensembl.tsv"))


def run_biomart_stage(
        dataset: str,
        genes: Sequence[str],
        output_dir: str,
        filter_name: str = "ensembl_gene_id",
        attributes: Sequence[str] = ("ensembl_gene_id", "pfam"),
        host: str = "https://www.ensembl.org/biomart/martservice",
    ) -> str:
    """Retrieve cross-referenced domain accessions from BioMart."""

    os.makedirs(output_dir, exist_ok=True)
    client = BiomartClient(host=host)
    table = client.get_bm(dataset, list(attributes), filters={filter_name: list(genes)})
    return _write_table(table, os.path.join(output_dir, "domains_biomart.tsv"))


def run_msa_stage(
        fasta_file: str,
        output_dir: str,
        threads: int = 1,
        model: str = "identity",
        plot_format: str = "pdf",
    ) -> Dict[str, str]:
    """Align sequences, compute distances, build an NJ tree and render both."""

    check_dependencies(["clustalo"])
    os.makedirs(output_dir, exist_ok=True)

    alignment = run_clustalo(fasta_file, output_dir, threads=threads)
    dm = distance_matrix(alignment, model=model)
    tree = build_tree(dm, method="nj")

    return {
        "distances": _write_table(
            distance_frame(dm).reset_index().rename(columns={"index": "id"}),
            os.path.join(output_dir, "distances.tsv"),
        ),
        "tree": write_tree(tree, os.path.join(output_dir, "tree.nwk")),
        "alignment_plot": plot_alignment(alignment, os.path.join(output_dir, f"alignment.{plot_format}")),
        "tree_plot": plot_tree(tree, os.path.join(output_dir, f"tree.{plot_format}")),
    }


def run_synteny_stage(
        fasta_file: str,
        output_dir: str,
        word_size: int = 28,
        evalue: float = 1e-10,
        max_gap: int = 500,
        min_anchors: int = 1,
        min_length: int = 100,
        plot_format: str = "pdf",
    ) -> Dict[str, str]:
    """Detect, align and export synteny blocks between the genomes of a FASTA file."""

    check_dependencies(["blastn"])
    os.makedirs(output_dir, exist_ok=True)
    db = build_sequence_db(fasta_file, os.path.join(output_dir, "seqdb", "sequences.idx"))

    try:
        hits = read_blast_hits(run_blastn(fasta_file, output_dir, word_size=word_size, evalue=evalue))
        blocks = find_synteny(db, hits, max_gap=max_gap, min_anchors=min_anchors, min_length=min_length)
        aligned = align_synteny(db, blocks)

        outputs = {
            "blocks": _write_table(synteny_frame(blocks), os.path.join(output_dir, "synteny_blocks.tsv")),
            "aligned": export_blocks(aligned, os.path.join(output_dir, "synteny_blocks.fasta")),
        }

        pairs = sorted({(b.query, b.subject) for b in blocks})
        for query, subject in pairs:
            path = os.path.join(output_dir, f"synteny_{query}_{subject}.{plot_format}")
            outputs[f"plot:{query}|{subject}"] = plot_synteny(blocks, path, query, subject)
    finally:
        db.close()

    return outputs


def run_classification_stage(
        fasta_file: str,
        labels_file: str,
        output_dir: str,
        k: int = 1,
        m: int = 3,
        cost: float = 1.0,
        train_fraction: float = 0.75,
        seed: Optional[int] = None,
        profile_index: int = 0,
        plot_format: str = "pdf",
    ) -> Dict[str, object]:
    """Train a gappy pair kernel SVM, evaluate it on held-out sequences and
    plot the prediction profile of one test sequence."""

    os.makedirs(output_dir, exist_ok=True)
    records = list(SeqIO.parse(fasta_file, "fasta"))
    labels = read_labels(labels_file)
    if len(labels) != len(records):
        raise ValueError(f"{fasta_file} has {len(records)} sequences but {labels_file} has {len(labels)} labels")

    seqs = [str(r.seq) for r in records]
    train, test = train_test_split_indices(len(seqs), train_fraction=train_fraction, seed=seed)
    print(f"Split {len(seqs)} sequences into {len(train)} training and {len(test)} test sequences")

    model = train_classifier([seqs[i] for i in train], labels[train], GappyPairKernel(k=k, m=m), cost=cost)
    predicted = predict(model, [seqs[i] for i in test])
    metrics = evaluate(labels[test], predicted, labels=(1, -1))

    for name in ("accuracy", "balanced_accuracy", "sensitivity", "specificity", "mcc"):
        print(f"{name}: {metrics[name]:.3f}")

    predictions = pd.DataFrame({
        "id": [records[i].id for i in test],
        "label": labels[test],
        "predicted": predicted,
    })

    chosen = test[profile_index] if len(test) else train[0]
    profile = prediction_profile(model, seqs[chosen])

    return {
        "metrics": metrics,
        "predictions": _write_table(predictions, os.path.join(output_dir, "predictions.tsv")),
        "profile_plot": plot_profile(
            profile, seqs[chosen],
            os.path.join(output_dir, f"profile_{records[chosen].id}.{plot_format}"),
            title=records[chosen].id,
        ),
    }


def run_structure_stage(
        fixed_file: str,
        moving_file: str,
        output_dir: str,
        chain_fixed: Optional[str] = None,
        chain_moving: Optional[str] = None,
        render: bool = False,
    ) -> Dict[str, object]:
    """Superimpose two structures, save the fitted one and write a PyMOL script."""

    os.makedirs(output_dir, exist_ok=True)
    fixed = load_structure(fixed_file)
    moving = load_structure(moving_file)

    result = align_structures(fixed, moving, chain_fixed, chain_moving)
    fitted = save_structure(moving, os.path.join(output_dir, f"{moving.id}_fitted.pdb"))
    script = write_pymol_script(
        fixed_file, fitted, os.path.join(output_dir, "superposition.pml"),
        fixed_name=fixed.id, moving_name=f"{moving.id}_fitted",
    )

    if render:
        render_pymol(script)

    return {"rmsd": result.rmsd, "n_aligned": result.n_aligned, "fitted": fitted, "script": script}
