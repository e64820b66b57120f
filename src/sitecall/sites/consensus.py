"""
Strict consensus calling and per-taxon call dictionaries.

A taxon gets a call at a position only when enough reads cover it and
every read shows the same base. A single discordant read is enough to
drop the position: the goal is sites fixed within a taxon, not majority
genotypes.
"""

import logging
from concurrent.futures import FIRST_EXCEPTION, ProcessPoolExecutor, wait
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

import pandas as pd

from .models import CALLABLE_BASES, BuildStats, PositionRecord, TaxonDictionary
from .pileup import iter_pileup

logger = logging.getLogger(__name__)

CALLS_COLUMNS = ["contig", "position", "base"]


def call_consensus(record: PositionRecord, min_reads: int) -> Optional[str]:
    """Call the consensus base at one position.

    Args:
        record: Decoded pileup position
        min_reads: Minimum number of reads required for a call

    Returns:
        The called base (A, C, G or T), or None if the position is below
        the read threshold, the reads disagree, or the only observation is
        not a callable base
    """
    if record.depth < min_reads:
        return None

    distinct = set(record.read_bases)
    if len(distinct) != 1:
        return None

    base = distinct.pop()
    if base not in CALLABLE_BASES:
        return None
    return base


def build_taxon_dictionary(
    taxon: str,
    pileup_path: Union[str, Path],
    min_reads: int,
) -> TaxonDictionary:
    """Build the call dictionary for one taxon from its pileup.

    Args:
        taxon: Taxon name
        pileup_path: Path to the taxon's pileup file
        min_reads: Minimum read depth for a call

    Returns:
        TaxonDictionary holding only positions with a base call

    Raises:
        FileNotFoundError: If the pileup does not exist
        MalformedLine, DepthMismatch: On the first bad pileup line
    """
    stats = BuildStats()
    calls = {}

    for record in iter_pileup(pileup_path, taxon=taxon):
        stats.positions_seen += 1
        if record.depth < min_reads:
            stats.low_coverage += 1
            continue
        base = call_consensus(record, min_reads)
        if base is None:
            stats.ambiguous += 1
            continue
        calls[record.key] = base

    stats.called = len(calls)
    logger.info(
        "%s: %d positions, %d called, %d below %d reads, %d ambiguous",
        taxon, stats.positions_seen, stats.called, stats.low_coverage,
        min_reads, stats.ambiguous,
    )

    return TaxonDictionary(taxon=taxon, calls=calls, source=str(pileup_path), stats=stats)


def build_taxon_dictionaries(
    taxa: Mapping[str, Union[str, Path]],
    min_reads: int,
    threads: int = 1,
) -> Dict[str, TaxonDictionary]:
    """Build call dictionaries for all taxa, one independent task per taxon.

    All tasks must finish before this returns. The first failure cancels
    the tasks that have not started and is re-raised, so a run never
    continues with a silently reduced set of taxa.

    Args:
        taxa: Mapping of taxon name to pileup path, in run order
        min_reads: Minimum read depth for a call
        threads: Number of worker processes (1 = build serially)

    Returns:
        Dictionary of TaxonDictionary keyed by taxon, in the order of ``taxa``
    """
    if threads <= 1 or len(taxa) <= 1:
        return {
            taxon: build_taxon_dictionary(taxon, path, min_reads)
            for taxon, path in taxa.items()
        }

    workers = min(threads, len(taxa))
    logger.info("Building calls for %d taxa with %d workers", len(taxa), workers)

    with ProcessPoolExecutor(max_workers=workers) as executor:
        futures = {
            taxon: executor.submit(build_taxon_dictionary, taxon, path, min_reads)
            for taxon, path in taxa.items()
        }
        done, not_done = wait(futures.values(), return_when=FIRST_EXCEPTION)

        for taxon, future in futures.items():
            if future in done and future.exception() is not None:
                for pending in not_done:
                    pending.cancel()
                logger.error("Building calls for %s failed; aborting run", taxon)
                raise future.exception()

    return {taxon: future.result() for taxon, future in futures.items()}


def write_taxon_calls(dictionary: TaxonDictionary, path: Union[str, Path]) -> Path:
    """Write a taxon's calls as a contig/position/base TSV, sorted by position."""
    path = Path(path)
    rows = sorted((contig, position, base) for (contig, position), base in dictionary.calls.items())
    df = pd.DataFrame(rows, columns=CALLS_COLUMNS)
    df.to_csv(path, sep="\t", index=False)
    logger.debug("Wrote %d calls for %s to %s", len(df), dictionary.taxon, path)
    return path


def read_taxon_calls(path: Union[str, Path], taxon: Optional[str] = None) -> TaxonDictionary:
    """Load a calls TSV written by write_taxon_calls.

    Args:
        path: Calls TSV
        taxon: Taxon name (defaults to the file name without extension)

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If required columns are missing or a base is not callable
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Calls file not found: {path}")

    df = pd.read_csv(path, sep="\t", dtype={"contig": str, "base": str}, keep_default_na=False)
    missing = [c for c in CALLS_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Calls file {path} is missing columns: {missing}")

    bad = set(df["base"]) - CALLABLE_BASES
    if bad:
        raise ValueError(f"Calls file {path} contains non-callable bases: {sorted(bad)}")

    calls = {
        (contig, int(position)): base
        for contig, position, base in zip(df["contig"], df["position"], df["base"])
    }
    name = taxon or path.name.split(".")[0]
    stats = BuildStats(called=len(calls))
    return TaxonDictionary(taxon=name, calls=calls, source=str(path), stats=stats)
