#!/usr/bin/env python3
import argparse
import logging

from phagecorr._data_config import *


def positive_int(value):
    try:
        ivalue = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value} is not an integer")

    if ivalue <= 0:
        raise argparse.ArgumentTypeError(f"{value} is not a positive integer")
    return ivalue


def validate_alpha(value):
    try:
        value = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value} is not a valid float.")

    if value <= 0.0 or value > 1.0:
        raise argparse.ArgumentTypeError("Significance threshold must be in (0, 1].")
    return value


def validate_cutoff(value):
    try:
        value = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value} is not a valid float.")

    if value < 0.0 or value >= 1.0:
        raise argparse.ArgumentTypeError("Abundance cutoff must be in [0, 1).")
    return value


def _add_common(group):
    group.add_argument(
        "--tag",
        default="",
        help="Optional tag to prepend to output filenames for distinction.",
    )
    group.add_argument(
        "--ranks",
        nargs="+",
        default=list(RANKS),
        help="Ordered rank names (default: %(default)s)",
    )
    group.add_argument(
        "--quiet",
        action="store_true",
        help="Only report warnings and errors.",
    )


def parse_cli(argv=None):
    parser = argparse.ArgumentParser(
        description="Rank correlations between bacteria and phage across taxonomic levels and cohorts"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # ----------------------------
    # FILL SUBCOMMAND
    # ----------------------------
    fill_sub = subparsers.add_parser("fill", help="Fill missing ranks of a hierarchy table.")

    req = fill_sub.add_argument_group("required arguments")
    req.add_argument(
        "--hierarchy_file",
        required=True,
        help="TSV with the taxon id in the first column and one column per rank.",
    )
    req.add_argument(
        "--output_dir",
        required=True,
        help="Directory where output files will be saved.",
    )

    opt = fill_sub.add_argument_group("optional arguments")
    _add_common(opt)

    def fill_command(args):
        from phagecorr.fill import fill_data

        args.tag = f"{args.tag}_" if args.tag else ""
        fill_data(
            hierarchy_file=args.hierarchy_file,
            output_dir=args.output_dir,
            ranks=args.ranks,
            tag=args.tag,
        )

    fill_sub.set_defaults(func=fill_command)

    # ----------------------------
    # FORMAT SUBCOMMAND
    # ----------------------------
    format_sub = subparsers.add_parser("format", help="Convert per-rank counts to relative abundance matrices.")

    req = format_sub.add_argument_group("required arguments")
    req.add_argument(
        "--counts_file",
        required=True,
        help=f"Long-format TSV with '{SAMPLE_COLUMN}', '{RANK_COLUMN}', '{TAXON_COLUMN}' and '{COUNT_COLUMN}' columns.",
    )
    req.add_argument(
        "--output_dir",
        required=True,
        help="Directory where output files will be saved.",
    )

    opt = format_sub.add_argument_group("optional arguments")
    _add_common(opt)
    opt.add_argument(
        "--abundance_cutoff",
        type=validate_cutoff,
        default=ABUNDANCE_CUTOFF,
        help="Relative abundances at or below this are set to 0 (default: %(default)s).",
    )

    def format_command(args):
        from phagecorr.format import format_data

        args.tag = f"{args.tag}_" if args.tag else ""
        format_data(
            counts_file=args.counts_file,
            output_dir=args.output_dir,
            ranks=args.ranks,
            cutoff=args.abundance_cutoff,
            tag=args.tag,
        )

    format_sub.set_defaults(func=format_command)

    # ----------------------------
    # CORRELATE SUBCOMMAND
    # ----------------------------
    corr_sub = subparsers.add_parser(
        "correlate", help="Run the bacteria-phage correlation workflow (in-memory)."
    )

    req = corr_sub.add_argument_group("required arguments")
    req.add_argument(
        "--bacteria_counts",
        required=True,
        help="Long-format bacteria count TSV.",
    )
    req.add_argument(
        "--phage_counts",
        required=True,
        help="Long-format phage count TSV.",
    )
    req.add_argument(
        "--annotations_a",
        required=True,
        help="First sample annotation TSV.",
    )
    req.add_argument(
        "--annotations_b",
        required=True,
        help="Second sample annotation TSV.",
    )
    req.add_argument(
        "--output_dir",
        required=True,
        help="Directory where output files will be saved.",
    )

    opt = corr_sub.add_argument_group("optional arguments")
    _add_common(opt)
    opt.add_argument(
        "--alpha",
        type=validate_alpha,
        default=DEFAULT_ALPHA,
        help="BH-corrected p-value threshold for the significant matrices (default: %(default)s).",
    )
    opt.add_argument(
        "--abundance_cutoff",
        type=validate_cutoff,
        default=ABUNDANCE_CUTOFF,
        help="Relative abundances at or below this are set to 0 (default: %(default)s).",
    )
    opt.add_argument(
        "--sample_column",
        default=SAMPLE_COLUMN,
        help="Sample id column in the annotation tables (default: %(default)s).",
    )
    opt.add_argument(
        "--covariate_column",
        default=COVARIATE_COLUMN,
        help="Cohort column in the annotation tables (default: %(default)s).",
    )
    opt.add_argument(
        "--cohorts",
        nargs="+",
        help="Cohort labels to compare. Multiple entries can be specified as e.g. --cohorts 'pos' 'neg' (default: all observed).",
    )
    opt.add_argument(
        "--n_workers",
        type=positive_int,
        default=1,
        help="Worker processes for the comparisons (default: %(default)s).",
    )

    def correlate_command(args):
        from phagecorr.pipelines import run_correlation

        args.tag = f"{args.tag}_" if args.tag else ""
        run_correlation(args)

    corr_sub.set_defaults(func=correlate_command)

    # --------------
    # Parse & Dispatch
    # --------------
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    parse_cli()
