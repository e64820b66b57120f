"""
Placement of assembled contigs on a reference genome.

Contig placements are read with pysam from SAM files produced by
aligning the assembled contigs to a reference. Any number of independent
alignments (e.g. from two different aligners) can be supplied; a contig
position is translated to a reference coordinate only when every source
agrees on the reference sequence, start, strand and the translated
position. Contigs without agreement stay in contig coordinates.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

import pysam

from .models import ReferenceAlignmentError, ReferenceCoordinate, Strand

logger = logging.getLogger(__name__)

HARD_CLIP = 5  # BAM_CHARD_CLIP


@dataclass(frozen=True)
class ContigPlacement:
    """Where one aligner placed one contig.

    Query positions are counted over the full contig, hard-clipped bases
    included, in the orientation stored in the SAM record.

    Attributes:
        contig: Contig identifier (SAM QNAME)
        reference: Reference sequence name
        start: 1-based leftmost reference position
        strand: "+" or "-"
        query_length: Full contig length implied by the CIGAR
        aligned: 1-based query position -> 1-based reference position, for
            aligned bases only
        cigar: CIGAR string, kept for messages
        mapping_quality: SAM MAPQ
    """
    contig: str
    reference: str
    start: int
    strand: str
    query_length: int
    aligned: Mapping[int, int] = field(default_factory=dict, compare=False, repr=False)
    cigar: str = ""
    mapping_quality: int = 0

    @classmethod
    def from_segment(
        cls,
        read: pysam.AlignedSegment,
        reference: Optional[str] = None,
    ) -> "ContigPlacement":
        """Build a placement from a mapped pysam record.

        Args:
            read: Mapped alignment record of one contig
            reference: Reference name (defaults to ``read.reference_name``,
                which needs a header)
        """
        cigar = read.cigartuples or []
        # get_aligned_pairs() counts query positions from the first stored
        # base, so a leading hard clip shifts every position
        leading_clip = cigar[0][1] if cigar and cigar[0][0] == HARD_CLIP else 0
        aligned = {
            qpos + leading_clip + 1: rpos + 1
            for qpos, rpos in read.get_aligned_pairs(matches_only=True)
        }
        return cls(
            contig=read.query_name,
            reference=reference or read.reference_name,
            start=read.reference_start + 1,
            strand=Strand.REVERSE.value if read.is_reverse else Strand.FORWARD.value,
            query_length=read.infer_read_length() or 0,
            aligned=aligned,
            cigar=read.cigarstring or "",
            mapping_quality=read.mapping_quality,
        )

    @property
    def agreement_key(self) -> Tuple[str, int, str]:
        return (self.reference, self.start, self.strand)

    def reference_position(self, position: int) -> Optional[int]:
        """Translate a 1-based contig position to a 1-based reference position.

        Returns None for positions that fall in an insertion, a clipped
        region or outside the contig.
        """
        if position < 1 or position > self.query_length:
            return None
        # SAM stores reverse-strand contigs reverse complemented
        if self.strand == Strand.REVERSE.value:
            position = self.query_length - position + 1
        return self.aligned.get(position)


def read_contig_placements(
    sam_path: Union[str, Path],
    min_mapping_quality: int = 0,
) -> Dict[str, ContigPlacement]:
    """Read primary contig placements from a SAM file.

    Unmapped, secondary and supplementary records are ignored, as are
    records below ``min_mapping_quality``. A contig with more than one
    primary placement is ambiguous and left out.

    Args:
        sam_path: SAM file of contigs aligned to the reference
        min_mapping_quality: Minimum MAPQ for a placement to be used

    Returns:
        Dictionary mapping contig id to its placement

    Raises:
        FileNotFoundError: If the SAM file doesn't exist
        ReferenceAlignmentError: If the header or a record cannot be read
    """
    path = Path(sam_path)
    if not path.exists():
        raise FileNotFoundError(f"Reference alignment not found: {sam_path}")

    placements: Dict[str, ContigPlacement] = {}
    ambiguous = set()
    low_quality = 0

    for read in iter_alignment_records(path):
        if read.is_unmapped or read.is_secondary or read.is_supplementary:
            continue
        if read.reference_id < 0 or not read.cigartuples:
            continue
        if read.mapping_quality < min_mapping_quality:
            low_quality += 1
            continue

        contig = read.query_name
        if contig in placements or contig in ambiguous:
            placements.pop(contig, None)
            ambiguous.add(contig)
            continue
        placements[contig] = ContigPlacement.from_segment(read)

    if ambiguous:
        logger.warning(
            "%s: %d contigs have more than one primary placement and were ignored",
            path.name, len(ambiguous),
        )
    logger.info(
        "%s: %d placed contigs (%d below MAPQ %d)",
        path.name, len(placements), low_quality, min_mapping_quality,
    )
    return placements


def iter_alignment_records(path: Union[str, Path]) -> Iterator[pysam.AlignedSegment]:
    """Yield every record of a SAM file in file order.

    Files without ``@SQ`` lines are accepted; records naming an unknown
    reference are then read as unmapped.

    Raises:
        ReferenceAlignmentError: If the header or a record cannot be parsed
    """
    record_number = None
    try:
        with pysam.AlignmentFile(str(path), "r", check_sq=False) as sam:
            record_number = 1
            for read in sam:
                yield read
                record_number += 1
    except (OSError, ValueError) as e:
        raise ReferenceAlignmentError(f"cannot parse SAM: {e}", path, record_number) from None


class CoordinateMap:
    """Translate contig positions to reference coordinates.

    Built from zero or more placement sources. With no sources every
    lookup returns None and the map is falsy.
    """

    def __init__(self, sources: Iterable[Dict[str, ContigPlacement]] = ()):
        self.sources: List[Dict[str, ContigPlacement]] = list(sources)
        self._agreed: Dict[str, Tuple[ContigPlacement, ...]] = {}
        self._discordant: List[str] = []
        self._build()

    @classmethod
    def from_sam(
        cls,
        sam_paths: Iterable[Union[str, Path]],
        min_mapping_quality: int = 0,
    ) -> "CoordinateMap":
        """Build a CoordinateMap from SAM files, one source per file."""
        return cls(read_contig_placements(p, min_mapping_quality) for p in sam_paths)

    def _build(self) -> None:
        if not self.sources:
            return

        all_contigs = set()
        for source in self.sources:
            all_contigs.update(source)

        for contig in sorted(all_contigs):
            placements = tuple(source.get(contig) for source in self.sources)
            if any(p is None for p in placements):
                # Placed by some sources only
                self._discordant.append(contig)
                continue
            if len({p.agreement_key for p in placements}) != 1:
                logger.debug(
                    "Contig %s placed inconsistently: %s",
                    contig, [p.agreement_key for p in placements],
                )
                self._discordant.append(contig)
                continue
            self._agreed[contig] = placements

        if len(self.sources) > 1 and self._discordant:
            logger.warning(
                "%d contigs lack agreement between %d alignment sources and keep contig coordinates",
                len(self._discordant), len(self.sources),
            )

    def __bool__(self) -> bool:
        return bool(self.sources)

    @property
    def agreed_contigs(self) -> List[str]:
        """Contigs every source places identically, sorted."""
        return sorted(self._agreed)

    @property
    def discordant_contigs(self) -> List[str]:
        """Contigs missing from a source or placed differently, sorted."""
        return list(self._discordant)

    def resolve(self, contig: str, position: int) -> Optional[ReferenceCoordinate]:
        """Return the reference coordinate of a contig position, if agreed."""
        placements = self._agreed.get(contig)
        if placements is None:
            return None

        translated = {p.reference_position(position) for p in placements}
        if len(translated) != 1:
            return None
        ref_pos = translated.pop()
        if ref_pos is None:
            return None

        first = placements[0]
        return ReferenceCoordinate(first.reference, ref_pos, first.strand)
