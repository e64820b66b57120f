"""
Cross-taxon merge and variable-site filter.

Combines the per-taxon call dictionaries into sites with one slot per
taxon, keeps the sites that are variable and have few enough missing
taxa, and puts them in a deterministic order.
"""

import logging
from collections import Counter
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .coordinates import CoordinateMap
from .models import Alignment, FilterStats, Site, SiteKey, TaxonDictionary, UnknownTaxon

logger = logging.getLogger(__name__)


def default_missing_threshold(num_taxa: int) -> int:
    """Default tolerated number of missing taxa: at least two taxa must have a call."""
    return max(num_taxa - 2, 0)


def _check_taxa(dictionaries: Mapping[str, TaxonDictionary], taxa: Sequence[str]) -> None:
    duplicates = [t for t, n in Counter(taxa).items() if n > 1]
    if duplicates:
        raise ValueError(f"Duplicate taxa in taxon order: {sorted(duplicates)}")
    for taxon in taxa:
        if taxon not in dictionaries:
            raise UnknownTaxon(taxon)
    for taxon in dictionaries:
        if taxon not in taxa:
            raise UnknownTaxon(taxon, "has calls but is missing from the taxon order")


def _sort_key(site: Site) -> Tuple:
    # Resolved sites first in genome order, then the rest in contig order
    if site.coordinate is not None:
        c = site.coordinate
        return (0, c.reference, c.position, site.contig, site.position)
    return (1, site.contig, site.position, "", 0)


def merge_taxon_dictionaries(
    dictionaries: Mapping[str, TaxonDictionary],
    taxa: Sequence[str],
    coordinate_map: Optional[CoordinateMap] = None,
    missing_threshold: Optional[int] = None,
    require_reference: bool = False,
) -> Alignment:
    """Merge per-taxon calls into an alignment of variable sites.

    Args:
        dictionaries: TaxonDictionary per taxon
        taxa: Fixed taxon order for the run
        coordinate_map: Optional contig-to-reference translation
        missing_threshold: Maximum number of taxa without a call at a
            retained site (default: number of taxa - 2)
        require_reference: Drop sites without a reference coordinate

    Returns:
        Alignment of retained sites in output order

    Raises:
        UnknownTaxon: If ``taxa`` and ``dictionaries`` do not name the same taxa
        ValueError: On duplicate taxa or a negative threshold
    """
    taxa = list(taxa)
    _check_taxa(dictionaries, taxa)

    if missing_threshold is None:
        missing_threshold = default_missing_threshold(len(taxa))
    if missing_threshold < 0:
        raise ValueError(f"missing_threshold must be >= 0, got {missing_threshold}")

    ordered = [dictionaries[t] for t in taxa]
    keys: Set[SiteKey] = set()
    for dictionary in ordered:
        keys.update(dictionary.calls)

    stats = FilterStats(candidate_sites=len(keys))
    retained: List[Site] = []
    unresolved_contigs: Set[str] = set()

    for contig, position in keys:
        calls = tuple(d.calls.get((contig, position)) for d in ordered)
        site = Site(contig, position, calls)

        if site.missing_count > missing_threshold:
            stats.too_much_missing += 1
            continue
        if len(site.distinct_bases) < 2:
            stats.invariant += 1
            continue

        if coordinate_map:
            coordinate = coordinate_map.resolve(contig, position)
            if coordinate is None:
                stats.unresolved += 1
                unresolved_contigs.add(contig)
                if require_reference:
                    stats.unresolved_dropped += 1
                    continue
            else:
                site = Site(contig, position, calls, coordinate)
        elif require_reference:
            stats.unresolved += 1
            stats.unresolved_dropped += 1
            continue

        retained.append(site)

    retained.sort(key=_sort_key)
    stats.retained = len(retained)

    if unresolved_contigs:
        logger.info(
            "%d variable sites on %d contigs have no reference coordinate%s",
            stats.unresolved, len(unresolved_contigs),
            " and were dropped" if require_reference else "",
        )
    logger.info(
        "Merged %d taxa: %d candidate positions, %d retained "
        "(%d invariant, %d over missing threshold %d)",
        len(taxa), stats.candidate_sites, stats.retained, stats.invariant,
        stats.too_much_missing, missing_threshold,
    )

    return Alignment(
        taxa=taxa,
        sites=retained,
        missing_threshold=missing_threshold,
        stats=stats,
    )


def get_alignment_summary(alignment: Alignment) -> Dict:
    """Summary statistics for a merged alignment.

    Args:
        alignment: Alignment produced by merge_taxon_dictionaries

    Returns:
        Dictionary with site, taxon and missing-data statistics
    """
    num_sites = alignment.num_sites
    per_taxon = {}
    for index, taxon in enumerate(alignment.taxa):
        called = sum(1 for site in alignment.sites if site.calls[index] is not None)
        per_taxon[taxon] = {
            "calls": called,
            "missing_fraction": (num_sites - called) / num_sites if num_sites else 0.0,
        }

    missing = [site.missing_count for site in alignment.sites]

    return {
        "num_taxa": alignment.num_taxa,
        "num_sites": num_sites,
        "resolved_sites": sum(1 for site in alignment.sites if site.is_resolved),
        "missing_threshold": alignment.missing_threshold,
        "mean_missing_per_site": sum(missing) / num_sites if num_sites else 0.0,
        "filter": alignment.stats.to_dict(),
        "taxa": per_taxon,
    }
