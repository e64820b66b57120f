"""
Alignment output.

Writes the merged alignment as one sequence per taxon (FASTA, NEXUS or
relaxed PHYLIP via Biopython) together with a coordinate listing that
gives the origin of every alignment column.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import pandas as pd
from Bio import AlignIO
from Bio.Align import MultipleSeqAlignment
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .models import Alignment, AlignmentFormat

logger = logging.getLogger(__name__)

COORDINATE_COLUMNS = [
    "site",
    "contig",
    "position",
    "reference",
    "reference_position",
    "strand",
    "missing",
    "bases",
]

_BIOPYTHON_FORMATS = {
    AlignmentFormat.FASTA: "fasta",
    AlignmentFormat.NEXUS: "nexus",
    AlignmentFormat.PHYLIP: "phylip-relaxed",
}


def alignment_to_records(alignment: Alignment, gap_char: str = "-") -> List[SeqRecord]:
    """Build one SeqRecord per taxon, in taxon order."""
    records = []
    for taxon in alignment.taxa:
        records.append(
            SeqRecord(
                Seq(alignment.sequence_for(taxon, gap_char)),
                id=taxon,
                description="",
                annotations={"molecule_type": "DNA"},
            )
        )
    return records


def write_alignment(
    alignment: Alignment,
    filepath: Union[str, Path],
    format: Optional[AlignmentFormat] = None,
    gap_char: str = "-",
) -> Path:
    """Write the alignment to a file.

    Args:
        alignment: Alignment to write
        filepath: Output file path
        format: Output format (defaults to NEXUS)
        gap_char: Character written for taxa without a call

    Returns:
        Path of the written file

    Raises:
        ValueError: If the alignment has no sites and the format needs at least one column
    """
    if format is None:
        format = AlignmentFormat.NEXUS

    if not alignment.sites and format != AlignmentFormat.FASTA:
        raise ValueError(f"Cannot write an alignment without sites as {format.value}")

    path = Path(filepath)
    records = alignment_to_records(alignment, gap_char)

    with open(path, "w") as f:
        if alignment.sites:
            AlignIO.write(MultipleSeqAlignment(records), f, _BIOPYTHON_FORMATS[format])
        else:
            # Headers only; no variable sites were retained
            for record in records:
                f.write(f">{record.id}\n\n")

    logger.info(
        "Wrote %d taxa x %d sites (%s) to %s",
        alignment.num_taxa, alignment.num_sites, format.value, path,
    )
    return path


def coordinates_table(alignment: Alignment) -> pd.DataFrame:
    """One row per alignment column giving its contig and reference origin."""
    rows = []
    for index, site in enumerate(alignment.sites, start=1):
        coordinate = site.coordinate
        rows.append({
            "site": index,
            "contig": site.contig,
            "position": site.position,
            "reference": coordinate.reference if coordinate else None,
            "reference_position": coordinate.position if coordinate else None,
            "strand": coordinate.strand if coordinate else None,
            "missing": site.missing_count,
            "bases": "".join(sorted(site.distinct_bases)),
        })

    df = pd.DataFrame(rows, columns=COORDINATE_COLUMNS)
    # Keep reference positions integral when some sites are unresolved
    df["reference_position"] = df["reference_position"].astype("Int64")
    return df


def write_coordinates(alignment: Alignment, filepath: Union[str, Path]) -> Path:
    """Write the coordinate listing as TSV; empty cells for unresolved sites."""
    path = Path(filepath)
    coordinates_table(alignment).to_csv(path, sep="\t", index=False)
    logger.debug("Wrote coordinates for %d sites to %s", alignment.num_sites, path)
    return path
