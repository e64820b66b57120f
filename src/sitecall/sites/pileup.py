"""
Pileup parsing.

Reads the six-column text pileup produced by ``samtools mpileup``:

    contig  position  reference_base  depth  read_bases  qualities

The read-base column is decoded into one uppercase observation per read:

- ``.`` and ``,`` match the reference on the forward/reverse strand
- ``ACGTN`` / ``acgtn`` are mismatches on the forward/reverse strand
- ``*`` marks a deletion in that read and is kept as an observation;
  ``#`` is the same placeholder on the reverse strand (``--reverse-del``)
- ``^`` starts a read and is followed by a mapping-quality character
- ``$`` ends a read
- ``+N``/``-N`` introduce an indel of N characters at the next position
- ``<`` and ``>`` are reference skips; they count toward depth but carry
  no base

Positions must increase within a contig and each contig must appear as a
single block, which lets callers process a taxon as one forward stream.
"""

import gzip
import logging
from pathlib import Path
from typing import IO, Iterator, List, Optional, Set, Tuple, Union

from .models import DepthMismatch, MalformedLine, PositionRecord

logger = logging.getLogger(__name__)

PILEUP_FIELDS = 6

NUCLEOTIDES = set("ACGTN")
REFERENCE_MATCH = set(".,")
REFERENCE_SKIP = set("<>")
DELETION = set("*#")


def open_pileup(path: Union[str, Path], mode: str = "rt") -> IO:
    """Open a pileup file for reading, transparently handling gzip."""
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)
    return open(p, mode)


def decode_line(raw: bytes) -> str:
    """Decode one raw pileup line.

    Raises:
        MalformedLine: If the line is not valid UTF-8 text
    """
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedLine(
            f"undecodable byte 0x{raw[e.start]:02x} at column {e.start + 1}"
        ) from None


def decode_read_bases(bases: str, reference_base: str) -> Tuple[List[str], int]:
    """Decode a pileup read-base field.

    Args:
        bases: The read-base column of a pileup line
        reference_base: Uppercase reference base used for ``.`` and ``,``

    Returns:
        Tuple of (decoded observations, number of reference-skip slots)

    Raises:
        MalformedLine: If the field contains an unknown character or a
            truncated indel
    """
    decoded: List[str] = []
    skipped = 0
    i = 0
    n = len(bases)

    while i < n:
        char = bases[i]

        if char == "^":
            # Read start; the next character is the mapping quality
            if i + 1 >= n:
                raise MalformedLine("read start marker '^' without mapping quality")
            i += 2
            continue
        if char == "$":
            i += 1
            continue
        if char in "+-":
            j = i + 1
            while j < n and bases[j].isdigit():
                j += 1
            if j == i + 1:
                raise MalformedLine(f"indel marker '{char}' without a length")
            length = int(bases[i + 1:j])
            if j + length > n:
                raise MalformedLine(f"indel payload of length {length} runs past end of field")
            i = j + length
            continue

        if char in REFERENCE_MATCH:
            decoded.append(reference_base)
        elif char in DELETION:
            decoded.append("*")
        elif char in REFERENCE_SKIP:
            skipped += 1
        elif char.upper() in NUCLEOTIDES:
            decoded.append(char.upper())
        else:
            raise MalformedLine(f"unexpected character '{char}' in read bases")
        i += 1

    return decoded, skipped


def parse_pileup_line(
    line: str,
    path: Optional[Union[str, Path]] = None,
    line_number: Optional[int] = None,
    taxon: Optional[str] = None,
) -> PositionRecord:
    """Parse one pileup line into a PositionRecord.

    Args:
        line: Raw pileup line (a trailing newline is ignored)
        path: Source file, used in error messages
        line_number: 1-based line number, used in error messages
        taxon: Taxon name, used in error messages

    Returns:
        Decoded PositionRecord

    Raises:
        MalformedLine: If the line is structurally invalid
        DepthMismatch: If the decoded observations do not match the depth column
    """
    try:
        return _parse_fields(line.rstrip("\r\n").split("\t"))
    except (MalformedLine, DepthMismatch) as e:
        raise e.__class__(e.reason, path, line_number, taxon) from None


def _parse_fields(parts: List[str]) -> PositionRecord:
    if len(parts) != PILEUP_FIELDS:
        raise MalformedLine(f"expected {PILEUP_FIELDS} tab-separated fields, got {len(parts)}")

    contig, pos_str, ref_str, depth_str, bases, _qualities = parts

    if not contig:
        raise MalformedLine("empty contig name")

    try:
        position = int(pos_str)
    except ValueError:
        raise MalformedLine(f"non-numeric position '{pos_str}'") from None
    if position < 1:
        raise MalformedLine(f"position must be >= 1, got {position}")

    try:
        depth = int(depth_str)
    except ValueError:
        raise MalformedLine(f"non-numeric depth '{depth_str}'") from None
    if depth < 0:
        raise MalformedLine(f"negative depth {depth}")

    reference_base = ref_str.upper()
    if len(reference_base) != 1 or not reference_base.isalpha():
        raise MalformedLine(f"invalid reference base '{ref_str}'")

    if depth == 0:
        # samtools writes either an empty field or '*' for uncovered positions
        if bases not in ("", "*"):
            raise DepthMismatch(f"depth is 0 but read bases are '{bases}'")
        return PositionRecord(contig, position, reference_base, ())

    if not bases:
        raise MalformedLine(f"empty read-base field with depth {depth}")

    decoded, skipped = decode_read_bases(bases, reference_base)
    if len(decoded) + skipped != depth:
        raise DepthMismatch(
            f"reported depth {depth} but decoded {len(decoded) + skipped} read bases"
        )

    return PositionRecord(contig, position, reference_base, tuple(decoded))


def iter_pileup(
    path: Union[str, Path],
    taxon: Optional[str] = None,
) -> Iterator[PositionRecord]:
    """Stream PositionRecords from a pileup file in file order.

    Args:
        path: Pileup file (plain text or ``.gz``)
        taxon: Taxon name, used in error messages

    Yields:
        One PositionRecord per non-blank line

    Raises:
        FileNotFoundError: If the file does not exist
        MalformedLine: On a structurally invalid line or out-of-order position
        DepthMismatch: If a line's decoded bases do not match its depth
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pileup file not found: {path}")

    current_contig: Optional[str] = None
    last_position = 0
    finished_contigs: Set[str] = set()

    with open_pileup(path, "rb") as f:
        for line_number, raw in enumerate(f, start=1):
            try:
                line = decode_line(raw)
            except MalformedLine as e:
                raise MalformedLine(e.reason, path, line_number, taxon) from None
            if not line.strip():
                continue

            record = parse_pileup_line(line, path, line_number, taxon)

            if record.contig != current_contig:
                if record.contig in finished_contigs:
                    raise MalformedLine(
                        f"contig '{record.contig}' appears in more than one block",
                        path, line_number, taxon,
                    )
                if current_contig is not None:
                    finished_contigs.add(current_contig)
                current_contig = record.contig
            elif record.position <= last_position:
                raise MalformedLine(
                    f"position {record.position} on contig '{record.contig}' "
                    f"does not follow {last_position}",
                    path, line_number, taxon,
                )
            last_position = record.position

            yield record
