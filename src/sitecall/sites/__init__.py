"""
SITECALL Sites Module: reference-free variable-site calling from pileups.

This module turns per-taxon pileups of reads mapped to a shared set of
assembled contigs into an alignment of sites that are fixed within each
taxon but differ between taxa.

Key Features:
- Stream and decode samtools pileup files
- Strict consensus calls (every read must agree)
- Optional placement of contigs on a reference, cross-checked across aligners
- Merge taxa, filter for variable sites under a missing-data threshold
- Write NEXUS/FASTA/PHYLIP alignments and a coordinate listing

Example Usage:
    >>> from sitecall.sites import build_taxon_dictionaries, merge_taxon_dictionaries
    >>> taxa = {"taxonA": "taxonA/taxonA.pileups", "taxonB": "taxonB/taxonB.pileups"}
    >>> dictionaries = build_taxon_dictionaries(taxa, min_reads=3, threads=2)
    >>> alignment = merge_taxon_dictionaries(dictionaries, list(taxa))
"""

# Data models
from .models import (
    Alignment,
    AlignmentFormat,
    BuildStats,
    DepthMismatch,
    FilterStats,
    MalformedLine,
    PileupError,
    PositionRecord,
    ReferenceAlignmentError,
    ReferenceCoordinate,
    Site,
    SiteCallError,
    Strand,
    TaxonDictionary,
    UnknownTaxon,
)

# Pileup parsing
from .pileup import (
    decode_read_bases,
    iter_pileup,
    parse_pileup_line,
)

# Consensus calling
from .consensus import (
    build_taxon_dictionaries,
    build_taxon_dictionary,
    call_consensus,
    read_taxon_calls,
    write_taxon_calls,
)

# Reference placement
from .coordinates import (
    ContigPlacement,
    CoordinateMap,
    iter_alignment_records,
    read_contig_placements,
)

# Merge and filter
from .merge import (
    default_missing_threshold,
    get_alignment_summary,
    merge_taxon_dictionaries,
)

# Output
from .emitter import (
    alignment_to_records,
    coordinates_table,
    write_alignment,
    write_coordinates,
)


__all__ = [
    # Models
    "Alignment",
    "AlignmentFormat",
    "BuildStats",
    "FilterStats",
    "PositionRecord",
    "ReferenceCoordinate",
    "Site",
    "Strand",
    "TaxonDictionary",
    # Errors
    "DepthMismatch",
    "MalformedLine",
    "PileupError",
    "ReferenceAlignmentError",
    "SiteCallError",
    "UnknownTaxon",
    # Parsing
    "decode_read_bases",
    "iter_pileup",
    "parse_pileup_line",
    # Calling
    "build_taxon_dictionaries",
    "build_taxon_dictionary",
    "call_consensus",
    "read_taxon_calls",
    "write_taxon_calls",
    # Coordinates
    "ContigPlacement",
    "CoordinateMap",
    "iter_alignment_records",
    "read_contig_placements",
    # Merge
    "default_missing_threshold",
    "get_alignment_summary",
    "merge_taxon_dictionaries",
    # Output
    "alignment_to_records",
    "coordinates_table",
    "write_alignment",
    "write_coordinates",
]
