"""
Data models for pileup-based site calling.

This module defines the core data structures used throughout the site
calling pipeline, from a single decoded pileup line up to the final
taxon-by-site alignment, together with the error types raised when an
input file cannot be trusted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


# Bases that can be called; anything else observed in reads blocks a call
CALLABLE_BASES = frozenset("ACGT")

# Key of a position in the contig coordinate space
SiteKey = Tuple[str, int]


class AlignmentFormat(Enum):
    """Supported output alignment formats."""
    FASTA = "fasta"
    NEXUS = "nexus"
    PHYLIP = "phylip"

    @property
    def extension(self) -> str:
        """File extension used for this format."""
        return {
            AlignmentFormat.FASTA: "fasta",
            AlignmentFormat.NEXUS: "nex",
            AlignmentFormat.PHYLIP: "phy",
        }[self]


class Strand(Enum):
    """Orientation of a contig relative to the reference genome."""
    FORWARD = "+"
    REVERSE = "-"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SiteCallError(Exception):
    """Base class for all site calling errors."""


class PileupError(SiteCallError, ValueError):
    """A pileup line that cannot be decoded.

    Attributes:
        reason: What is wrong with the line
        path: Pileup file the line came from
        line_number: 1-based line number in that file
        taxon: Taxon whose pileup was being read
    """

    def __init__(
        self,
        reason: str,
        path: Optional[str] = None,
        line_number: Optional[int] = None,
        taxon: Optional[str] = None,
    ):
        self.reason = reason
        self.path = str(path) if path is not None else None
        self.line_number = line_number
        self.taxon = taxon
        super().__init__(self._format())

    def _format(self) -> str:
        where = []
        if self.taxon:
            where.append(f"taxon {self.taxon}")
        if self.path:
            where.append(self.path)
        if self.line_number is not None:
            where.append(f"line {self.line_number}")
        if where:
            return f"{', '.join(where)}: {self.reason}"
        return self.reason

    def __reduce__(self):
        # Keep attributes when crossing a worker process boundary
        return (self.__class__, (self.reason, self.path, self.line_number, self.taxon))


class MalformedLine(PileupError):
    """Structurally invalid pileup line."""


class DepthMismatch(PileupError):
    """Decoded read-base count differs from the reported depth."""


class UnknownTaxon(SiteCallError, ValueError):
    """A taxon is named in the run configuration but has no input, or vice versa."""

    def __init__(self, taxon: str, detail: str = "no pileup input for this taxon"):
        self.taxon = taxon
        self.detail = detail
        super().__init__(f"Unknown taxon '{taxon}': {detail}")

    def __reduce__(self):
        return (self.__class__, (self.taxon, self.detail))


class ReferenceAlignmentError(SiteCallError, ValueError):
    """Unreadable record in a contig-to-reference alignment.

    Attributes:
        reason: What could not be read
        path: SAM file
        record_number: 1-based index of the alignment record (headers excluded)
    """

    def __init__(self, reason: str, path: Optional[str] = None, record_number: Optional[int] = None):
        self.reason = reason
        self.path = str(path) if path is not None else None
        self.record_number = record_number
        prefix = ""
        if self.path:
            prefix = f"{self.path}"
            if record_number is not None:
                prefix += f", record {record_number}"
            prefix += ": "
        super().__init__(prefix + reason)

    def __reduce__(self):
        return (self.__class__, (self.reason, self.path, self.record_number))


# ---------------------------------------------------------------------------
# Per-taxon data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PositionRecord:
    """One decoded pileup line.

    Attributes:
        contig: Contig identifier
        position: 1-based position on the contig
        reference_base: Uppercase base of the assembled contig at this position
        read_bases: Uppercase observed bases, one per covering read
    """
    contig: str
    position: int
    reference_base: str
    read_bases: Tuple[str, ...]

    @property
    def depth(self) -> int:
        """Number of decoded read observations."""
        return len(self.read_bases)

    @property
    def key(self) -> SiteKey:
        return (self.contig, self.position)


@dataclass
class BuildStats:
    """Counters collected while building one taxon's calls."""
    positions_seen: int = 0
    low_coverage: int = 0
    ambiguous: int = 0
    called: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "positions_seen": self.positions_seen,
            "low_coverage": self.low_coverage,
            "ambiguous": self.ambiguous,
            "called": self.called,
        }


@dataclass
class TaxonDictionary:
    """Consensus calls for one taxon.

    Only positions with a base call are stored; a missing key means the
    taxon has no call there, whatever the reason.

    Attributes:
        taxon: Taxon name
        calls: Mapping from (contig, position) to the called base
        source: Pileup file the calls were built from
        stats: Build counters
    """
    taxon: str
    calls: Dict[SiteKey, str] = field(default_factory=dict)
    source: Optional[str] = None
    stats: BuildStats = field(default_factory=BuildStats)

    def __len__(self) -> int:
        return len(self.calls)

    def __contains__(self, key: SiteKey) -> bool:
        return key in self.calls

    def get(self, key: SiteKey) -> Optional[str]:
        """Return the call at a position, or None if the taxon has none."""
        return self.calls.get(key)


# ---------------------------------------------------------------------------
# Coordinates and alignment
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class ReferenceCoordinate:
    """A position on the reference genome.

    Attributes:
        reference: Reference sequence name
        position: 1-based position on the reference
        strand: Orientation of the contig the site came from
    """
    reference: str
    position: int
    strand: str = Strand.FORWARD.value


@dataclass(frozen=True)
class Site:
    """One column of the output alignment.

    Attributes:
        contig: Contig the site lies on
        position: 1-based position on the contig
        calls: One call per taxon, in the run's taxon order (None = no call)
        coordinate: Reference coordinate, if the contig could be placed
    """
    contig: str
    position: int
    calls: Tuple[Optional[str], ...]
    coordinate: Optional[ReferenceCoordinate] = None

    @property
    def key(self) -> SiteKey:
        return (self.contig, self.position)

    @property
    def missing_count(self) -> int:
        """Number of taxa without a call."""
        return sum(1 for c in self.calls if c is None)

    @property
    def distinct_bases(self) -> FrozenSet[str]:
        """Distinct bases among the taxa that have a call."""
        return frozenset(c for c in self.calls if c is not None)

    @property
    def is_resolved(self) -> bool:
        return self.coordinate is not None


@dataclass
class FilterStats:
    """Counters collected while merging and filtering sites."""
    candidate_sites: int = 0
    invariant: int = 0
    too_much_missing: int = 0
    unresolved: int = 0
    unresolved_dropped: int = 0
    retained: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "candidate_sites": self.candidate_sites,
            "invariant": self.invariant,
            "too_much_missing": self.too_much_missing,
            "unresolved": self.unresolved,
            "unresolved_dropped": self.unresolved_dropped,
            "retained": self.retained,
        }


@dataclass
class Alignment:
    """Retained sites in output order, with the run's fixed taxon order.

    Attributes:
        taxa: Taxon order; slot i of every site belongs to taxa[i]
        sites: Retained sites in output order
        missing_threshold: Threshold the sites were filtered with
        stats: Merge and filter counters
    """
    taxa: List[str]
    sites: List[Site] = field(default_factory=list)
    missing_threshold: int = 0
    stats: FilterStats = field(default_factory=FilterStats)

    def __len__(self) -> int:
        """Return the alignment length (number of sites)."""
        return len(self.sites)

    @property
    def num_taxa(self) -> int:
        return len(self.taxa)

    @property
    def num_sites(self) -> int:
        return len(self.sites)

    def sequence_for(self, taxon: str, gap_char: str = "-") -> str:
        """Concatenate one taxon's calls across all sites.

        Raises:
            UnknownTaxon: If the taxon is not part of this alignment
        """
        try:
            index = self.taxa.index(taxon)
        except ValueError:
            raise UnknownTaxon(taxon, "not part of this alignment") from None
        return "".join(site.calls[index] or gap_char for site in self.sites)
