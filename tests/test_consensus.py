"""
Tests for SITECALL consensus calling.

Tests cover:
- Strict consensus policy (depth threshold, any disagreement)
- Per-taxon dictionary building
- Parallel building and failure propagation
- Calls TSV round trip
"""

import sys
from pathlib import Path

import pytest

# Add src to path for sitecall imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sitecall.sites import (
    DepthMismatch,
    MalformedLine,
    PositionRecord,
    TaxonDictionary,
    build_taxon_dictionaries,
    build_taxon_dictionary,
    call_consensus,
    read_taxon_calls,
    write_taxon_calls,
)


def make_record(bases: str, ref: str = "A") -> PositionRecord:
    return PositionRecord("c1", 1, ref, tuple(bases))


class TestCallConsensus:
    """Tests for the strict consensus caller."""

    def test_unanimous_call(self):
        """Test unanimous reads at sufficient depth give a call."""
        assert call_consensus(make_record("GGG"), min_reads=3) == "G"

    def test_below_threshold(self):
        """Test depth below the threshold gives no call."""
        assert call_consensus(make_record("GG"), min_reads=3) is None

    def test_single_discordant_read(self):
        """Test one discordant read among many blocks the call."""
        record = make_record("A" * 999 + "C")
        assert call_consensus(record, min_reads=3) is None

    def test_reference_base_not_counted(self):
        """Test the reference base does not take part in the vote."""
        assert call_consensus(make_record("TTT", ref="A"), min_reads=3) == "T"

    def test_only_n_reads(self):
        """Test reads showing only N give no call."""
        assert call_consensus(make_record("NNN"), min_reads=3) is None

    def test_deletion_blocks_call(self):
        """Test a deletion in any read blocks the call."""
        assert call_consensus(make_record("AAA*"), min_reads=3) is None

    def test_threshold_of_one(self):
        """Test a single read suffices when the threshold is 1."""
        assert call_consensus(make_record("C"), min_reads=1) == "C"


class TestBuildTaxonDictionary:
    """Tests for building one taxon's calls."""

    def test_only_calls_stored(self, tmp_path):
        """Test low-coverage and ambiguous positions are not stored."""
        pileup = tmp_path / "t1.pileups"
        pileup.write_text(
            "c1\t1\tA\t3\t...\tIII\n"      # call A
            "c1\t2\tC\t2\t..\tII\n"        # below threshold
            "c1\t3\tG\t3\t..A\tIII\n"      # ambiguous
            "c1\t4\tT\t3\tccc\tIII\n"      # call C
        )
        d = build_taxon_dictionary("t1", pileup, min_reads=3)

        assert d.taxon == "t1"
        assert d.calls == {("c1", 1): "A", ("c1", 4): "C"}
        assert ("c1", 2) not in d
        assert d.get(("c1", 3)) is None
        assert d.stats.positions_seen == 4
        assert d.stats.low_coverage == 1
        assert d.stats.ambiguous == 1
        assert d.stats.called == 2
        assert d.source == str(pileup)

    def test_parse_error_aborts(self, tmp_path):
        """Test a bad line aborts the build with the taxon named."""
        pileup = tmp_path / "t1.pileups"
        pileup.write_text("c1\t1\tA\t5\t....\tIIII\n")
        with pytest.raises(DepthMismatch) as excinfo:
            build_taxon_dictionary("t1", pileup, min_reads=3)
        assert excinfo.value.taxon == "t1"


class TestBuildTaxonDictionaries:
    """Tests for building all taxa."""

    def _write(self, tmp_path, name, content):
        path = tmp_path / f"{name}.pileups"
        path.write_text(content)
        return path

    def test_serial_preserves_order(self, tmp_path):
        """Test results are keyed in the requested taxon order."""
        taxa = {
            "zeta": self._write(tmp_path, "zeta", "c1\t1\tA\t3\t...\tIII\n"),
            "alpha": self._write(tmp_path, "alpha", "c1\t1\tA\t3\tCCC\tIII\n"),
        }
        result = build_taxon_dictionaries(taxa, min_reads=3, threads=1)
        assert list(result) == ["zeta", "alpha"]
        assert result["alpha"].get(("c1", 1)) == "C"

    def test_parallel_matches_serial(self, tmp_path):
        """Test worker processes give the same calls as a serial build."""
        taxa = {
            f"t{i}": self._write(tmp_path, f"t{i}", f"c1\t1\tA\t3\t{'ACGT'[i] * 3}\tIII\n")
            for i in range(4)
        }
        serial = build_taxon_dictionaries(taxa, min_reads=3, threads=1)
        parallel = build_taxon_dictionaries(taxa, min_reads=3, threads=3)

        assert list(parallel) == list(taxa)
        for taxon in taxa:
            assert parallel[taxon].calls == serial[taxon].calls

    def test_parallel_failure_propagates(self, tmp_path):
        """Test a failing taxon aborts the whole build with its details."""
        taxa = {
            "good": self._write(tmp_path, "good", "c1\t1\tA\t3\t...\tIII\n"),
            "bad": self._write(tmp_path, "bad", "c1\t1\tA\t3\n"),
        }
        with pytest.raises(MalformedLine) as excinfo:
            build_taxon_dictionaries(taxa, min_reads=3, threads=2)
        assert excinfo.value.taxon == "bad"
        assert excinfo.value.line_number == 1

    def test_binary_garbage_names_taxon_and_line(self, tmp_path):
        """Test undecodable bytes abort the taxon with file and line."""
        path = tmp_path / "t1.pileups"
        path.write_bytes(b"c1\t1\tA\t3\t...\tIII\n\xff\xfe\xfd\n")
        with pytest.raises(MalformedLine) as excinfo:
            build_taxon_dictionary("t1", path, 3)
        assert excinfo.value.taxon == "t1"
        assert excinfo.value.line_number == 2
        assert str(path) in str(excinfo.value)


class TestTaxonCallsFile:
    """Tests for persisting a taxon's calls."""

    def test_write_and_read(self, tmp_path):
        """Test calls survive a write/read cycle, sorted on disk."""
        d = TaxonDictionary(taxon="t1", calls={("c2", 5): "G", ("c1", 10): "A", ("c1", 2): "T"})
        path = write_taxon_calls(d, tmp_path / "t1.calls.tsv")

        lines = path.read_text().splitlines()
        assert lines[0] == "contig\tposition\tbase"
        assert lines[1] == "c1\t2\tT"

        loaded = read_taxon_calls(path)
        assert loaded.taxon == "t1"
        assert loaded.calls == d.calls

    def test_read_rejects_bad_base(self, tmp_path):
        """Test non-callable bases in a calls file are rejected."""
        path = tmp_path / "t1.calls.tsv"
        path.write_text("contig\tposition\tbase\nc1\t1\tN\n")
        with pytest.raises(ValueError, match="non-callable"):
            read_taxon_calls(path)
