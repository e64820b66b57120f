"""
Pre-flight validation of site calling inputs.

Unlike the parsers used during a run, which stop at the first bad line,
validate_pileup scans a whole file and reports every problem it finds so
that inputs can be fixed in one pass before a long run. SAM files are
read with the same pysam reader a run uses.
"""

import os
from typing import Dict, List, Optional, Set, Tuple

import pysam

from sitecall.sites.coordinates import iter_alignment_records
from sitecall.sites.models import PileupError, ReferenceAlignmentError
from sitecall.sites.pileup import decode_line, open_pileup, parse_pileup_line


def validate_pileup(
    pileup_path: str,
    fasta_path: Optional[str] = None,
    max_errors: int = 100,
    strict: bool = False,
) -> Tuple[bool, List[str], List[str]]:
    """
    Validate a pileup file before a run.

    Args:
        pileup_path: Path to the pileup file (plain or .gz)
        fasta_path: Optional assembled contigs FASTA to check contig names,
            positions and reference bases against
        max_errors: Stop collecting errors after this many
        strict: If True, treat warnings as errors

    Returns:
        Tuple of (is_valid, errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not os.path.exists(pileup_path):
        errors.append(f"Pileup file not found: {pileup_path}")
        return False, errors, warnings

    contigs: Dict[str, str] = {}
    if fasta_path:
        if os.path.exists(fasta_path):
            contigs = _parse_fasta_sequences(fasta_path)
        else:
            warnings.append(f"Contig FASTA not found, skipping contig checks: {fasta_path}")

    current_contig = None
    last_position = 0
    finished: Set[str] = set()
    unknown_contigs: Set[str] = set()
    ref_mismatches = 0
    records = 0

    with open_pileup(pileup_path, "rb") as f:
        for line_number, raw in enumerate(f, start=1):
            if len(errors) >= max_errors:
                warnings.append(f"Stopped after {max_errors} errors at line {line_number}")
                break

            try:
                line = decode_line(raw)
                if not line.strip():
                    continue
                record = parse_pileup_line(line)
            except PileupError as e:
                errors.append(f"Line {line_number}: {e.reason}")
                continue
            records += 1

            # Ordering contract
            if record.contig != current_contig:
                if record.contig in finished:
                    errors.append(
                        f"Line {line_number}: contig '{record.contig}' appears in more than one block"
                    )
                if current_contig is not None:
                    finished.add(current_contig)
                current_contig = record.contig
            elif record.position <= last_position:
                errors.append(
                    f"Line {line_number}: position {record.position} does not follow {last_position}"
                )
            last_position = record.position

            if contigs:
                sequence = contigs.get(record.contig)
                if sequence is None:
                    if record.contig not in unknown_contigs:
                        warnings.append(
                            f"Line {line_number}: contig '{record.contig}' not found in FASTA"
                        )
                        unknown_contigs.add(record.contig)
                elif record.position > len(sequence):
                    errors.append(
                        f"Line {line_number}: position {record.position} exceeds "
                        f"contig length ({len(sequence)})"
                    )
                elif sequence[record.position - 1] != record.reference_base:
                    ref_mismatches += 1

    if ref_mismatches:
        warnings.append(f"{ref_mismatches} positions have a reference base that differs from the FASTA")
    if records == 0 and not errors:
        warnings.append("Pileup contains no positions")

    is_valid = len(errors) == 0
    if strict and len(warnings) > 0:
        is_valid = False

    return is_valid, errors, warnings


def validate_reference_alignment(sam_path: str) -> Tuple[bool, List[str], List[str]]:
    """
    Basic validation of a contig-to-reference SAM file.

    The file is read with the same reader a run uses, so parsing stops at
    the first unreadable record.

    Args:
        sam_path: Path to the SAM file

    Returns:
        Tuple of (is_valid, errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not os.path.exists(sam_path):
        errors.append(f"SAM file not found: {sam_path}")
        return False, errors, warnings

    records = 0
    mapped = 0
    unknown_reference = 0
    seen_contigs: Set[str] = set()
    repeated_contigs: Set[str] = set()

    try:
        for read in iter_alignment_records(sam_path):
            records += 1
            if read.is_unmapped:
                continue
            if read.reference_id < 0:
                unknown_reference += 1
                continue
            if not read.cigartuples:
                warnings.append(f"Record {records}: mapped contig '{read.query_name}' has no CIGAR")
                continue
            mapped += 1
            if not (read.is_secondary or read.is_supplementary):
                if read.query_name in seen_contigs:
                    repeated_contigs.add(read.query_name)
                seen_contigs.add(read.query_name)
    except ReferenceAlignmentError as e:
        errors.append(f"Record {e.record_number}: {e.reason}" if e.record_number else e.reason)

    if not errors:
        with pysam.AlignmentFile(str(sam_path), "r", check_sq=False) as sam:
            if not sam.references:
                warnings.append("Missing SAM header (@SQ lines)")
    if unknown_reference:
        warnings.append(f"{unknown_reference} records name a reference missing from the header")
    if repeated_contigs:
        warnings.append(
            f"{len(repeated_contigs)} contigs have more than one primary placement and will be ignored"
        )
    if mapped == 0 and not errors:
        warnings.append("No mapped contigs in alignment")

    is_valid = len(errors) == 0
    return is_valid, errors, warnings


def _parse_fasta_sequences(fasta_path: str) -> Dict[str, str]:
    """
    Parse FASTA file to get full sequences.

    Args:
        fasta_path: Path to FASTA file

    Returns:
        Dictionary mapping sequence IDs to sequences (uppercase)
    """
    sequences = {}
    current_id = None
    current_seq = []

    with open(fasta_path, 'r') as f:
        for line in f:
            line = line.strip()
            if line.startswith('>'):
                if current_id is not None:
                    sequences[current_id] = ''.join(current_seq).upper()
                # Extract ID (first word after >)
                current_id = line[1:].split()[0]
                current_seq = []
            else:
                current_seq.append(line)

        # Don't forget the last sequence
        if current_id is not None:
            sequences[current_id] = ''.join(current_seq).upper()

    return sequences
