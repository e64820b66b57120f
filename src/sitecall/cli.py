"""
SITECALL Command-Line Interface

Entry points for the sitecall-run, sitecall-taxon and sitecall-validate commands.
"""

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional

from sitecall import __version__
from sitecall.config import Config, get_config
from sitecall.logging import log_settings, setup_logging
from sitecall.pipeline import discover_taxa, run_site_calling
from sitecall.sites.consensus import build_taxon_dictionary, write_taxon_calls
from sitecall.sites.models import AlignmentFormat, SiteCallError
from sitecall.validation import validate_pileup, validate_reference_alignment


def _parse_taxon_args(values: List[str]) -> Dict[str, Path]:
    """Parse repeated NAME=PILEUP arguments."""
    taxa: Dict[str, Path] = {}
    for value in values:
        if "=" not in value:
            raise argparse.ArgumentTypeError(f"Expected NAME=PILEUP, got '{value}'")
        name, path = value.split("=", 1)
        name = name.strip()
        if name in taxa:
            raise argparse.ArgumentTypeError(f"Taxon '{name}' given twice")
        taxa[name] = Path(path.strip())
    return taxa


def _add_logging_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-v", "--verbose", action="store_true", help="Print debug messages")
    parser.add_argument("--log-file", type=Path, help="Also write the log to this file")


def build_run_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sitecall-run",
        description="Call variable sites across taxa from per-taxon pileups",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One folder per taxon under data/, each holding a .pileups file
  sitecall-run --data-dir data/ -o out/alignment

  # Explicit inputs, contigs placed on a reference by two aligners
  sitecall-run --taxon A=a.pileups --taxon B=b.pileups --taxon C=c.pileups \\
      --reference-sam contigs.bowtie2.sam --reference-sam contigs.bwa.sam -o out/aln
        """,
    )

    inputs = parser.add_argument_group("inputs")
    inputs.add_argument("--data-dir", type=Path, help="Directory with one pileup per taxon")
    inputs.add_argument(
        "--taxon", action="append", default=[], metavar="NAME=PILEUP",
        help="Taxon pileup (repeatable)",
    )
    inputs.add_argument(
        "--reference-sam", action="append", default=[], type=Path,
        help="SAM of contigs aligned to a reference (repeatable; all must agree)",
    )
    inputs.add_argument("--taxa", help="Comma-separated taxon order (default: sorted names)")

    parser.add_argument("-o", "--output-prefix", required=True, type=Path, help="Output path prefix")

    options = parser.add_argument_group("calling options")
    options.add_argument("--min-reads", type=int, help="Minimum reads for a call (default: 3)")
    options.add_argument("--missing", type=int, help="Maximum taxa without a call (default: taxa - 2)")
    options.add_argument(
        "--require-reference", action="store_true", default=None,
        help="Keep only sites with a reference coordinate",
    )
    options.add_argument("--min-mapq", type=int, help="Minimum MAPQ for contig placements")
    options.add_argument("--threads", type=int, help="Worker processes (default: 4)")
    options.add_argument(
        "--format", choices=[f.value for f in AlignmentFormat],
        help="Alignment format (default: nexus)",
    )
    options.add_argument("--suffix", help="Pileup suffix for --data-dir (default: .pileups)")

    _add_logging_args(parser)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def run_main(argv: Optional[List[str]] = None) -> None:
    """Entry point for sitecall-run command."""
    parser = build_run_parser()
    args = parser.parse_args(argv)

    logger = setup_logging("sitecall", log_file=args.log_file, verbose=args.verbose)

    if not args.data_dir and not args.taxon:
        parser.error("Specify --data-dir or at least one --taxon NAME=PILEUP")

    config = Config(
        min_reads=args.min_reads,
        missing_threshold=args.missing,
        require_reference=args.require_reference,
        min_mapping_quality=args.min_mapq,
        threads=args.threads,
        output_format=args.format,
        pileup_suffix=args.suffix,
    )
    log_settings(logger, config.to_dict(), title="Configuration")

    try:
        taxa: Dict[str, Path] = {}
        if args.data_dir:
            taxa.update(discover_taxa(args.data_dir, config.pileup_suffix))
        try:
            explicit = _parse_taxon_args(args.taxon)
        except argparse.ArgumentTypeError as e:
            parser.error(str(e))
        for name, path in explicit.items():
            if name in taxa:
                raise ValueError(f"Taxon '{name}' given with --taxon and found in --data-dir")
            taxa[name] = path

        order = [t.strip() for t in args.taxa.split(",") if t.strip()] if args.taxa else None

        result = run_site_calling(
            taxa,
            args.output_prefix,
            config=config,
            reference_alignments=args.reference_sam,
            taxon_order=order,
        )
    except (SiteCallError, ValueError, OSError) as e:
        logger.error("%s", e)
        sys.exit(1)

    logger.info("Retained %d variable sites across %d taxa", result.alignment.num_sites, result.alignment.num_taxa)
    if result.alignment_path:
        logger.info("Alignment:   %s", result.alignment_path)
    logger.info("Coordinates: %s", result.coordinates_path)
    logger.info("Summary:     %s", result.summary_path)
    sys.exit(0)


def taxon_main(argv: Optional[List[str]] = None) -> None:
    """Entry point for sitecall-taxon command."""
    parser = argparse.ArgumentParser(
        prog="sitecall-taxon",
        description="Build one taxon's consensus calls and write them as TSV",
    )
    parser.add_argument("pileup", type=Path, help="Taxon pileup file")
    parser.add_argument("-n", "--name", help="Taxon name (default: pileup file name)")
    parser.add_argument("-o", "--output", type=Path, help="Output TSV (default: <pileup>.calls.tsv)")
    parser.add_argument("--min-reads", type=int, help="Minimum reads for a call (default: 3)")
    _add_logging_args(parser)
    args = parser.parse_args(argv)

    logger = setup_logging("sitecall", log_file=args.log_file, verbose=args.verbose)
    config = Config(min_reads=args.min_reads)

    is_valid, errors = config.validate()
    if not is_valid:
        for error in errors:
            logger.error("%s", error)
        sys.exit(1)

    name = args.name or args.pileup.name.split(".")[0]
    output = args.output or args.pileup.with_name(f"{name}.calls.tsv")

    try:
        dictionary = build_taxon_dictionary(name, args.pileup, config.min_reads)
        write_taxon_calls(dictionary, output)
    except (SiteCallError, OSError) as e:
        logger.error("%s", e)
        sys.exit(1)

    logger.info("Wrote %d calls to %s", len(dictionary), output)
    sys.exit(0)


def validate_main(argv: Optional[List[str]] = None) -> None:
    """Entry point for sitecall-validate command."""
    parser = argparse.ArgumentParser(
        prog="sitecall-validate",
        description="Check configuration and, optionally, pileup and SAM inputs",
    )
    parser.add_argument("--pileup", action="append", default=[], help="Pileup to validate (repeatable)")
    parser.add_argument("--contigs", help="Assembled contigs FASTA to check pileups against")
    parser.add_argument("--sam", action="append", default=[], help="Reference SAM to validate (repeatable)")
    parser.add_argument("--strict", action="store_true", help="Treat warnings as errors")
    _add_logging_args(parser)
    args = parser.parse_args(argv)

    logger = setup_logging("sitecall.validate", log_file=args.log_file, verbose=args.verbose)

    logger.info("SITECALL Configuration Validation")
    logger.info("=================================")

    config = get_config()
    config.print_status()

    ok, errors = config.validate()
    for error in errors:
        logger.error("  ✗ %s", error)

    for pileup in args.pileup:
        valid, file_errors, warnings = validate_pileup(pileup, fasta_path=args.contigs, strict=args.strict)
        _report(logger, pileup, valid, file_errors, warnings)
        ok = ok and valid

    for sam in args.sam:
        valid, file_errors, warnings = validate_reference_alignment(sam)
        if args.strict and warnings:
            valid = False
        _report(logger, sam, valid, file_errors, warnings)
        ok = ok and valid

    if not ok:
        sys.exit(1)
    logger.info("✓ All checks passed")
    sys.exit(0)


def _report(logger, path: str, valid: bool, errors: List[str], warnings: List[str]) -> None:
    for error in errors:
        logger.error("%s: %s", path, error)
    for warning in warnings:
        logger.warning("%s: %s", path, warning)
    if valid:
        logger.info("✓ %s", path)
    else:
        logger.error("✗ %s", path)


if __name__ == "__main__":
    run_main()
