"""
End-to-end site calling run.

This module provides the high-level interface that ties together taxon
discovery, parallel per-taxon calling, optional reference placement,
merging and output. It holds no state of its own: everything a run needs
is passed in through arguments and a Config.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from sitecall.config import Config
from sitecall.sites.consensus import build_taxon_dictionaries
from sitecall.sites.coordinates import CoordinateMap
from sitecall.sites.emitter import write_alignment, write_coordinates
from sitecall.sites.merge import get_alignment_summary, merge_taxon_dictionaries
from sitecall.sites.models import Alignment, AlignmentFormat, UnknownTaxon

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Outputs of a site calling run.

    Attributes:
        alignment: The merged, filtered alignment
        alignment_path: Alignment file (None if nothing could be written)
        coordinates_path: Coordinate listing TSV
        summary_path: Run summary JSON
        summary: The run summary
    """
    alignment: Alignment
    alignment_path: Optional[Path]
    coordinates_path: Path
    summary_path: Path
    summary: Dict[str, Any] = field(default_factory=dict)


def discover_taxa(data_dir: Union[str, Path], suffix: str = ".pileups") -> Dict[str, Path]:
    """Find one pileup per taxon under a data directory.

    Two layouts are recognised and may be mixed:
    - ``data_dir/<taxon>/<anything><suffix>`` (one taxon folder each)
    - ``data_dir/<taxon><suffix>``

    Gzipped pileups (``<suffix>.gz``) are accepted in both.

    Args:
        data_dir: Directory to search
        suffix: Pileup file suffix

    Returns:
        Dictionary mapping taxon name to pileup path, sorted by taxon

    Raises:
        FileNotFoundError: If the directory does not exist or holds no pileups
        ValueError: If a taxon folder holds several pileups or a taxon is found twice
    """
    root = Path(data_dir)
    if not root.is_dir():
        raise FileNotFoundError(f"Data directory not found: {data_dir}")

    patterns = [f"*{suffix}", f"*{suffix}.gz"]
    found: Dict[str, Path] = {}

    for entry in sorted(root.iterdir()):
        if entry.is_dir():
            pileups = sorted(p for pattern in patterns for p in entry.glob(pattern))
            if not pileups:
                logger.debug("Skipping %s: no *%s file", entry, suffix)
                continue
            if len(pileups) > 1:
                raise ValueError(
                    f"Taxon folder {entry} holds {len(pileups)} pileups: "
                    f"{[p.name for p in pileups]}"
                )
            taxon, path = entry.name, pileups[0]
        elif entry.name.endswith(suffix) or entry.name.endswith(suffix + ".gz"):
            taxon = entry.name[: entry.name.rindex(suffix)]
            path = entry
        else:
            continue

        if taxon in found:
            raise ValueError(f"Taxon '{taxon}' found twice: {found[taxon]} and {path}")
        found[taxon] = path

    if not found:
        raise FileNotFoundError(f"No *{suffix} pileups found in {data_dir}")

    return dict(sorted(found.items()))


def resolve_taxon_order(
    available: Iterable[str],
    requested: Optional[Sequence[str]] = None,
) -> List[str]:
    """Fix the taxon order for a run.

    Args:
        available: Taxa with pileup input
        requested: Explicit order; if given, it must name exactly the taxa to use

    Returns:
        Requested order, or available taxa sorted by name

    Raises:
        UnknownTaxon: If the requested order names a taxon without input
        ValueError: If the requested order repeats a taxon
    """
    available = set(available)
    if requested is None:
        return sorted(available)

    seen = set()
    for taxon in requested:
        if taxon in seen:
            raise ValueError(f"Taxon '{taxon}' listed twice in taxon order")
        if taxon not in available:
            raise UnknownTaxon(taxon)
        seen.add(taxon)

    skipped = sorted(available - seen)
    if skipped:
        logger.info("Taxa not in the requested order are excluded: %s", ", ".join(skipped))
    return list(requested)


def run_site_calling(
    taxa: Mapping[str, Union[str, Path]],
    output_prefix: Union[str, Path],
    config: Optional[Config] = None,
    reference_alignments: Sequence[Union[str, Path]] = (),
    taxon_order: Optional[Sequence[str]] = None,
) -> RunResult:
    """Call variable sites across taxa and write the alignment.

    Writes ``<prefix>.<ext>`` (alignment), ``<prefix>_coordinates.tsv`` and
    ``<prefix>_summary.json``.

    Args:
        taxa: Mapping of taxon name to pileup path
        output_prefix: Output path prefix
        config: Run configuration (defaults to Config())
        reference_alignments: SAM files placing contigs on a reference
        taxon_order: Explicit taxon order (defaults to sorted names)

    Returns:
        RunResult with the alignment, output paths and summary

    Raises:
        ValueError: On invalid configuration
        UnknownTaxon: If the taxon order names a taxon without input
        MalformedLine, DepthMismatch: If any taxon's pileup is invalid
        ReferenceAlignmentError: If a reference alignment is invalid
    """
    config = config or Config()
    is_valid, errors = config.validate()
    if not is_valid:
        raise ValueError(f"Invalid configuration: {'; '.join(errors)}")

    if config.require_reference and not reference_alignments:
        raise ValueError("require_reference is set but no reference alignment was supplied")

    order = resolve_taxon_order(taxa.keys(), taxon_order)
    missing_threshold = config.missing_threshold_for(len(order))
    logger.info(
        "Run: %d taxa, min reads %d, missing threshold %d, %d reference alignment(s)",
        len(order), config.min_reads, missing_threshold, len(reference_alignments),
    )

    coordinate_map = CoordinateMap.from_sam(reference_alignments, config.min_mapping_quality)

    inputs = {taxon: Path(taxa[taxon]) for taxon in order}
    dictionaries = build_taxon_dictionaries(inputs, config.min_reads, config.threads)

    alignment = merge_taxon_dictionaries(
        dictionaries,
        order,
        coordinate_map=coordinate_map,
        missing_threshold=missing_threshold,
        require_reference=config.require_reference,
    )

    prefix = Path(output_prefix)
    prefix.parent.mkdir(parents=True, exist_ok=True)

    fmt = config.alignment_format
    alignment_path: Optional[Path] = None
    if alignment.sites or fmt == AlignmentFormat.FASTA:
        alignment_path = write_alignment(
            alignment,
            prefix.with_name(f"{prefix.name}.{fmt.extension}"),
            format=fmt,
            gap_char=config.gap_char,
        )
    else:
        logger.warning("No variable sites retained; %s alignment not written", fmt.value)

    coordinates_path = write_coordinates(alignment, prefix.with_name(f"{prefix.name}_coordinates.tsv"))

    summary = {
        "config": config.to_dict(),
        "inputs": {taxon: str(path) for taxon, path in inputs.items()},
        "reference_alignments": [str(p) for p in reference_alignments],
        "placement": {
            "agreed_contigs": len(coordinate_map.agreed_contigs),
            "discordant_contigs": len(coordinate_map.discordant_contigs),
        },
        "build": {taxon: d.stats.to_dict() for taxon, d in dictionaries.items()},
        "alignment": get_alignment_summary(alignment),
    }
    summary_path = prefix.with_name(f"{prefix.name}_summary.json")
    with open(summary_path, "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2, sort_keys=True)

    return RunResult(
        alignment=alignment,
        alignment_path=alignment_path,
        coordinates_path=coordinates_path,
        summary_path=summary_path,
        summary=summary,
    )
