import argparse
from . import __version__
from .pipeline import run_biomart_stage
from .pipeline import run_classification_stage
from .pipeline import run_domain_stage
from .pipeline import run_ensembl_stage
from .pipeline import run_motif_stage
from .pipeline import run_msa_stage
from .pipeline import run_structure_stage
from .pipeline import run_synteny_stage
import os


def _add_output(parser):
    parser.add_argument(
        "-o",
        "--out_dir",
        dest="output_dir",
        help="directory for output files",
        type=str,
        required=True,
        default=None,
    )


def get_args(argv=None):
    description = (
        "seqwalk: a walkthrough of motif, domain, alignment, synteny,"
        + " classification and structure analyses"
    )
    main_parser = argparse.ArgumentParser(
        description=description,
        prog="seqwalk",
    )
    main_parser.add_argument(
        "-v", "--version", action="version", version=f"%(prog)s {__version__}"
    )
    subparsers = main_parser.add_subparsers(dest="stage", required=True)

    # motifs
    motif_parser = subparsers.add_parser("motifs", help="scan, enrichment and MEME discovery")
    io_opts = motif_parser.add_argument_group("Input and output")
    io_opts.add_argument("-m", "--motifs", dest="motif_file", help="motif matrix file", type=str, required=True)
    io_opts.add_argument("-f", "--fasta", dest="fasta_file", help="FASTA file of sequences to scan", type=str, required=True)
    io_opts.add_argument(
        "--format",
        dest="motif_format",
        help="motif file format understood by Bio.motifs (default: jaspar)",
        type=str,
        default="jaspar",
    )
    _add_output(io_opts)
    scan_opts = motif_parser.add_argument_group("Scan arguments")
    scan_opts.add_argument("--threshold", dest="threshold", help="minimum log-odds score", type=float, default=None)
    scan_opts.add_argument(
        "--pvalue",
        dest="pvalue",
        help="per-window p-value cutoff used when no threshold is given",
        type=float,
        default=None,
    )
    scan_opts.add_argument("--kmer", dest="kmer", help="k-mer size kept by the background shuffle (default: 3)", type=int, default=3)
    scan_opts.add_argument("--seed", dest="seed", help="random seed for the shuffle", type=int, default=None)
    scan_opts.add_argument("--discover", dest="discover", help="also run MEME de novo discovery", action="store_true")
    scan_opts.add_argument("--nmotifs", dest="nmotifs", help="motifs reported by MEME (default: 3)", type=int, default=3)

    # local domains
    domain_parser = subparsers.add_parser("domains", help="local gene -> Pfam domain lookup")
    io_opts = domain_parser.add_argument_group("Input and output")
    io_opts.add_argument("-a", "--annotation", dest="annotation_file", help="annotation table (TSV/CSV)", type=str, required=True)
    io_opts.add_argument("-p", "--pfam", dest="pfam_file", help="Pfam-A.clans.tsv description table", type=str, required=True)
    io_opts.add_argument("-g", "--genes", dest="genes", help="gene identifiers", nargs="+", required=True)
    io_opts.add_argument("--keytype", dest="keytype", help="identifier type (default: ENSEMBL)", type=str, default="ENSEMBL")
    _add_output(io_opts)

    # Ensembl REST
    ensembl_parser = subparsers.add_parser("ensembl", help="protein domains from the Ensembl REST API")
    io_opts = ensembl_parser.add_argument_group("Input and output")
    io_opts.add_argument("-s", "--species", dest="species", help="species, e.g. homo_sapiens", type=str, required=True)
    io_opts.add_argument("-g", "--genes", dest="genes", help="gene symbols or IDs", nargs="+", required=True)
    io_opts.add_argument(
        "--keytype",
        dest="keytype",
        help="GENENAME or GENEID (default: GENENAME)",
        choices=["GENENAME", "GENEID"],
        default="GENENAME",
    )
    io_opts.add_argument("--source", dest="source", help="protein feature source (default: Pfam)", type=str, default="Pfam")
    _add_output(io_opts)

    # BioMart
    biomart_parser = subparsers.add_parser("biomart", help="domain accessions from BioMart")
    io_opts = biomart_parser.add_argument_group("Input and output")
    io_opts.add_argument("-d", "--dataset", dest="dataset", help="dataset, e.g. hsapiens_gene_ensembl", type=str, required=True)
    io_opts.add_argument("-g", "--genes", dest="genes", help="values for the filter", nargs="+", required=True)
    io_opts.add_argument("--filter", dest="filter_name", help="filter name (default: ensembl_gene_id)", type=str, default="ensembl_gene_id")
    io_opts.add_argument(
        "--attributes",
        dest="attributes",
        help="attributes to return (default: ensembl_gene_id pfam)",
        nargs="+",
        default=["ensembl_gene_id", "pfam"],
    )
    _add_output(io_opts)

    # MSA
    msa_parser = subparsers.add_parser("msa", help="multiple alignment, distances and NJ tree")
    io_opts = msa_parser.add_argument_group("Input and output")
    io_opts.add_argument("-f", "--fasta", dest="fasta_file", help="FASTA file of related proteins", type=str, required=True)
    io_opts.add_argument("-t", "--threads", dest="threads", help="clustalo threads (default: 1)", type=int, default=1)
    io_opts.add_argument("--format", dest="plot_format", help="plot file format (default: pdf)", type=str, default="pdf")
    _add_output(io_opts)

    # synteny
    synteny_parser = subparsers.add_parser("synteny", help="synteny blocks between genomes")
    io_opts = synteny_parser.add_argument_group("Input and output")
    io_opts.add_argument("-f", "--fasta", dest="fasta_file", help="FASTA file with two or more genomes", type=str, required=True)
    io_opts.add_argument("--format", dest="plot_format", help="plot file format (default: pdf)", type=str, default="pdf")
    _add_output(io_opts)
    block_opts = synteny_parser.add_argument_group("Block arguments")
    block_opts.add_argument("--word_size", dest="word_size", help="blastn seed length (default: 28)", type=int, default=28)
    block_opts.add_argument("-e", "--evalue", dest="e_value", help="blastn E-value threshold (default: 1e-10)", type=float, default=1e-10)
    block_opts.add_argument("--max_gap", dest="max_gap", help="largest gap between anchors (default: 500)", type=int, default=500)
    block_opts.add_argument("--min_anchors", dest="min_anchors", help="fewest blastn hits per block (default: 1)", type=int, default=1)
    block_opts.add_argument("--min_length", dest="min_length", help="shortest block (default: 100)", type=int, default=100)

    # classification
    classify_parser = subparsers.add_parser("classify", help="gappy pair kernel SVM")
    io_opts = classify_parser.add_argument_group("Input and output")
    io_opts.add_argument("-f", "--fasta", dest="fasta_file", help="FASTA file of protein sequences", type=str, required=True)
    io_opts.add_argument("-l", "--labels", dest="labels_file", help="one label (1/-1) per sequence", type=str, required=True)
    io_opts.add_argument("--format", dest="plot_format", help="plot file format (default: pdf)", type=str, default="pdf")
    _add_output(io_opts)
    model_opts = classify_parser.add_argument_group("Model arguments")
    model_opts.add_argument("-k", dest="k", help="k-mer length (default: 1)", type=int, default=1)
    model_opts.add_argument("-m", dest="m", help="largest gap (default: 3)", type=int, default=3)
    model_opts.add_argument("-c", "--cost", dest="cost", help="SVM cost (default: 1.0)", type=float, default=1.0)
    model_opts.add_argument("--train_fraction", dest="train_fraction", help="training share (default: 0.75)", type=float, default=0.75)
    model_opts.add_argument("--seed", dest="seed", help="random seed for the split", type=int, default=None)

    # structure
    structure_parser = subparsers.add_parser("structure", help="superimpose two structures")
    io_opts = structure_parser.add_argument_group("Input and output")
    io_opts.add_argument("--fixed", dest="fixed_file", help="reference PDB/mmCIF file", type=str, required=True)
    io_opts.add_argument("--moving", dest="moving_file", help="PDB/mmCIF file to fit", type=str, required=True)
    io_opts.add_argument("--chain_fixed", dest="chain_fixed", help="chain of the reference", type=str, default=None)
    io_opts.add_argument("--chain_moving", dest="chain_moving", help="chain of the mobile structure", type=str, default=None)
    io_opts.add_argument("--render", dest="render", help="open the result in PyMOL", action="store_true")
    _add_output(io_opts)

    args = main_parser.parse_args(argv)

    return args


def main(argv=None):
    args = get_args(argv)

    if not os.path.exists(args.output_dir):
        os.makedirs(args.output_dir, exist_ok=True)

    if args.stage == "motifs":
        run_motif_stage(
            motif_file=args.motif_file,
            fasta_file=args.fasta_file,
            output_dir=args.output_dir,
            fmt=args.motif_format,
            threshold=args.threshold,
            pvalue=args.pvalue,
            k=args.kmer,
            seed=args.seed,
            discover=args.discover,
            nmotifs=args.nmotifs,
        )
    elif args.stage == "domains":
        run_domain_stage(
            annotation_file=args.annotation_file,
            pfam_file=args.pfam_file,
            genes=args.genes,
            output_dir=args.output_dir,
            keytype=args.keytype,
        )
    elif args.stage == "ensembl":
        run_ensembl_stage(
            species=args.species,
            genes=args.genes,
            output_dir=args.output_dir,
            keytype=args.keytype,
            source=args.source,
        )
    elif args.stage == "biomart":
        run_biomart_stage(
            dataset=args.dataset,
            genes=args.genes,
            output_dir=args.output_dir,
            filter_name=args.filter_name,
            attributes=args.attributes,
        )
    elif args.stage == "msa":
        run_msa_stage(
            fasta_file=args.fasta_file,
            output_dir=args.output_dir,
            threads=args.threads,
            plot_format=args.plot_format,
        )
    elif args.stage == "synteny":
        run_synteny_stage(
            fasta_file=args.fasta_file,
            output_dir=args.output_dir,
            word_size=args.word_size,
            evalue=args.e_value,
            max_gap=args.max_gap,
            min_anchors=args.min_anchors,
            min_length=args.min_length,
            plot_format=args.plot_format,
        )
    elif args.stage == "classify":
        result = run_classification_stage(
            fasta_file=args.fasta_file,
            labels_file=args.labels_file,
            output_dir=args.output_dir,
            k=args.k,
            m=args.m,
            cost=args.cost,
            train_fraction=args.train_fraction,
            seed=args.seed,
            plot_format=args.plot_format,
        )
        print(result["metrics"]["confusion_matrix"])
    elif args.stage == "structure":
        result = run_structure_stage(
            fixed_file=args.fixed_file,
            moving_file=args.moving_file,
            output_dir=args.output_dir,
            chain_fixed=args.chain_fixed,
            chain_moving=args.chain_moving,
            render=args.render,
        )
        print(f"RMSD over {result['n_aligned']} residues: {result['rmsd']:.3f}")


if __name__ == "__main__":
    main()
