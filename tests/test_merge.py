"""
Tests for SITECALL cross-taxon merging and filtering.

Tests cover:
- Missing-data threshold and variability filter
- Default threshold (taxa - 2)
- Taxon order validation
- Reference-coordinate handling and output ordering
- Independence from taxon processing order
- Alignment summary statistics
"""

import random
import sys
from pathlib import Path

import pysam
import pytest

# Add src to path for sitecall imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sitecall.sites import (
    ContigPlacement,
    CoordinateMap,
    ReferenceCoordinate,
    TaxonDictionary,
    UnknownTaxon,
    default_missing_threshold,
    get_alignment_summary,
    merge_taxon_dictionaries,
)

TAXA = ["t1", "t2", "t3", "t4"]


def placed(contig, start, cigar="50M"):
    """Forward placement of a contig on chr1 at a 1-based start."""
    read = pysam.AlignedSegment()
    read.query_name = contig
    read.flag = 0
    read.reference_id = 0
    read.reference_start = start - 1
    read.mapping_quality = 60
    read.cigarstring = cigar
    return ContigPlacement.from_segment(read, reference="chr1")


def make_dictionaries(calls_per_taxon):
    """Build TaxonDictionaries from {taxon: {(contig, pos): base}}."""
    return {
        taxon: TaxonDictionary(taxon=taxon, calls=dict(calls))
        for taxon, calls in calls_per_taxon.items()
    }


class TestFilter:
    """Tests for site retention."""

    def test_default_threshold(self):
        """Test the default threshold keeps sites called in at least two taxa."""
        assert default_missing_threshold(4) == 2
        assert default_missing_threshold(2) == 0
        assert default_missing_threshold(1) == 0

    def test_variable_site_retained(self):
        """Test calls A, A, C and one absent taxon give a retained site."""
        d = make_dictionaries({
            "t1": {("c1", 10): "A"},
            "t2": {("c1", 10): "A"},
            "t3": {("c1", 10): "C"},
            "t4": {},
        })
        alignment = merge_taxon_dictionaries(d, TAXA)

        assert alignment.missing_threshold == 2
        assert alignment.num_sites == 1
        site = alignment.sites[0]
        assert site.calls == ("A", "A", "C", None)
        assert site.missing_count == 1
        assert site.distinct_bases == frozenset({"A", "C"})

    def test_invariant_site_dropped(self):
        """Test calls A, A, A and one absent taxon are not variable."""
        d = make_dictionaries({
            "t1": {("c1", 10): "A"},
            "t2": {("c1", 10): "A"},
            "t3": {("c1", 10): "A"},
            "t4": {},
        })
        alignment = merge_taxon_dictionaries(d, TAXA)
        assert alignment.num_sites == 0
        assert alignment.stats.invariant == 1

    def test_too_much_missing_dropped(self):
        """Test a variable site over the missing threshold is dropped."""
        d = make_dictionaries({
            "t1": {("c1", 10): "A"},
            "t2": {("c1", 10): "C"},
            "t3": {},
            "t4": {},
        })
        assert merge_taxon_dictionaries(d, TAXA).num_sites == 1

        alignment = merge_taxon_dictionaries(d, TAXA, missing_threshold=1)
        assert alignment.num_sites == 0
        assert alignment.stats.too_much_missing == 1

    def test_zero_missing_threshold(self):
        """Test threshold 0 requires every taxon to have a call."""
        d = make_dictionaries({
            "t1": {("c1", 1): "A", ("c1", 2): "A"},
            "t2": {("c1", 1): "G", ("c1", 2): "G"},
            "t3": {("c1", 1): "G"},
            "t4": {("c1", 1): "G", ("c1", 2): "G"},
        })
        alignment = merge_taxon_dictionaries(d, TAXA, missing_threshold=0)
        assert [s.key for s in alignment.sites] == [("c1", 1)]

    def test_negative_threshold(self):
        """Test negative thresholds are rejected."""
        d = make_dictionaries({t: {} for t in TAXA})
        with pytest.raises(ValueError, match=">= 0"):
            merge_taxon_dictionaries(d, TAXA, missing_threshold=-1)

    def test_retained_sites_satisfy_both_conditions(self):
        """Test every retained site meets the threshold and is variable."""
        rng = random.Random(7)
        calls = {t: {} for t in TAXA}
        for pos in range(1, 300):
            for taxon in TAXA:
                if rng.random() < 0.7:
                    calls[taxon][("c1", pos)] = rng.choice("ACGT")
        alignment = merge_taxon_dictionaries(make_dictionaries(calls), TAXA, missing_threshold=1)

        assert alignment.num_sites > 0
        for site in alignment.sites:
            assert site.missing_count <= 1
            assert len(site.distinct_bases) >= 2


class TestTaxonOrder:
    """Tests for taxon order validation."""

    def test_unknown_taxon_in_order(self):
        """Test an ordered taxon without calls raises UnknownTaxon."""
        d = make_dictionaries({"t1": {}, "t2": {}})
        with pytest.raises(UnknownTaxon, match="t3"):
            merge_taxon_dictionaries(d, ["t1", "t2", "t3"])

    def test_taxon_missing_from_order(self):
        """Test calls for a taxon outside the order raise UnknownTaxon."""
        d = make_dictionaries({"t1": {}, "t2": {}, "t3": {}})
        with pytest.raises(UnknownTaxon, match="t3"):
            merge_taxon_dictionaries(d, ["t1", "t2"])

    def test_duplicate_taxon(self):
        """Test a repeated taxon is a configuration error."""
        d = make_dictionaries({"t1": {}, "t2": {}})
        with pytest.raises(ValueError, match="Duplicate"):
            merge_taxon_dictionaries(d, ["t1", "t2", "t1"])

    def test_slots_follow_order(self):
        """Test site slots follow the given order, not dictionary order."""
        d = make_dictionaries({
            "t1": {("c1", 1): "A"},
            "t2": {("c1", 1): "C"},
        })
        alignment = merge_taxon_dictionaries(d, ["t2", "t1"])
        assert alignment.sites[0].calls == ("C", "A")
        assert alignment.sequence_for("t1") == "A"


class TestOrdering:
    """Tests for output order and reference coordinates."""

    def _variable_calls(self, keys):
        return {
            "t1": {k: "A" for k in keys},
            "t2": {k: "C" for k in keys},
        }

    def test_native_order(self):
        """Test sites sort by contig then position without a reference."""
        keys = [("c2", 1), ("c1", 20), ("c1", 3), ("c10", 1)]
        d = make_dictionaries(self._variable_calls(keys))
        alignment = merge_taxon_dictionaries(d, ["t1", "t2"])
        assert [s.key for s in alignment.sites] == [
            ("c1", 3), ("c1", 20), ("c10", 1), ("c2", 1),
        ]

    def test_independent_of_processing_order(self):
        """Test the alignment does not depend on the order taxa were built in."""
        rng = random.Random(11)
        calls = {t: {("c%d" % rng.randint(1, 5), rng.randint(1, 50)): rng.choice("ACGT")
                     for _ in range(80)} for t in TAXA}

        forward = make_dictionaries(calls)
        backward = make_dictionaries(dict(reversed(list(calls.items()))))

        a = merge_taxon_dictionaries(forward, TAXA)
        b = merge_taxon_dictionaries(backward, TAXA)
        assert a.sites == b.sites

    def test_resolved_before_unresolved(self):
        """Test resolved sites come first in genome order, then contig order."""
        cmap = CoordinateMap([{
            "cB": placed("cB", 100),
            "cA": placed("cA", 500),
        }])
        keys = [("cA", 1), ("cB", 10), ("cZ", 2), ("cC", 5)]
        d = make_dictionaries(self._variable_calls(keys))
        alignment = merge_taxon_dictionaries(d, ["t1", "t2"], coordinate_map=cmap)

        assert [s.key for s in alignment.sites] == [("cB", 10), ("cA", 1), ("cC", 5), ("cZ", 2)]
        assert alignment.sites[0].coordinate == ReferenceCoordinate("chr1", 109, "+")
        assert alignment.sites[2].coordinate is None
        assert alignment.stats.unresolved == 2

    def test_require_reference_drops_unresolved(self):
        """Test unresolved sites are excluded when a reference is required."""
        a = {"c1": placed("c1", 100)}
        b = {"c1": placed("c1", 200)}
        cmap = CoordinateMap([a, b])
        d = make_dictionaries(self._variable_calls([("c1", 1)]))

        kept = merge_taxon_dictionaries(d, ["t1", "t2"], coordinate_map=cmap)
        assert [s.key for s in kept.sites] == [("c1", 1)]
        assert kept.sites[0].coordinate is None

        dropped = merge_taxon_dictionaries(d, ["t1", "t2"], coordinate_map=cmap, require_reference=True)
        assert dropped.num_sites == 0
        assert dropped.stats.unresolved_dropped == 1


class TestSummary:
    """Tests for alignment summaries."""

    def test_summary(self):
        """Test summary counts per site and per taxon."""
        d = make_dictionaries({
            "t1": {("c1", 1): "A", ("c1", 2): "A"},
            "t2": {("c1", 1): "C", ("c1", 2): "G"},
            "t3": {("c1", 1): "C"},
        })
        alignment = merge_taxon_dictionaries(d, ["t1", "t2", "t3"])
        summary = get_alignment_summary(alignment)

        assert summary["num_taxa"] == 3
        assert summary["num_sites"] == 2
        assert summary["resolved_sites"] == 0
        assert summary["mean_missing_per_site"] == 0.5
        assert summary["taxa"]["t3"] == {"calls": 1, "missing_fraction": 0.5}
        assert summary["filter"]["retained"] == 2

    def test_empty_summary(self):
        """Test summary of an alignment without sites."""
        d = make_dictionaries({"t1": {}, "t2": {}})
        summary = get_alignment_summary(merge_taxon_dictionaries(d, ["t1", "t2"]))
        assert summary["num_sites"] == 0
        assert summary["mean_missing_per_site"] == 0.0
