"""
Tests for SITECALL alignment output.

Tests cover:
- Per-taxon sequences with gap characters
- FASTA, NEXUS and PHYLIP writing (read back with Biopython)
- Coordinate listing contents and order
- Empty alignments
"""

import sys
from pathlib import Path

import pandas as pd
import pytest
from Bio import AlignIO

# Add src to path for sitecall imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sitecall.sites import (
    Alignment,
    AlignmentFormat,
    ReferenceCoordinate,
    Site,
    alignment_to_records,
    coordinates_table,
    write_alignment,
    write_coordinates,
)


@pytest.fixture
def alignment():
    return Alignment(
        taxa=["t1", "t2", "t3"],
        sites=[
            Site("c1", 5, ("A", "C", None), ReferenceCoordinate("chr1", 104, "+")),
            Site("c2", 1, ("G", None, "T")),
            Site("c2", 9, ("T", "T", "A")),
        ],
        missing_threshold=1,
    )


class TestRecords:
    """Tests for sequence construction."""

    def test_sequences(self, alignment):
        """Test each taxon's sequence follows site order with gaps."""
        records = alignment_to_records(alignment)
        assert [r.id for r in records] == ["t1", "t2", "t3"]
        assert [str(r.seq) for r in records] == ["AGT", "C-T", "-TA"]

    def test_custom_gap(self, alignment):
        """Test a custom gap character."""
        assert alignment.sequence_for("t2", gap_char="N") == "CNT"


class TestWriteAlignment:
    """Tests for alignment files."""

    def test_fasta(self, alignment, tmp_path):
        """Test FASTA output reads back unchanged."""
        path = write_alignment(alignment, tmp_path / "aln.fasta", format=AlignmentFormat.FASTA)
        msa = AlignIO.read(str(path), "fasta")
        assert [(r.id, str(r.seq)) for r in msa] == [("t1", "AGT"), ("t2", "C-T"), ("t3", "-TA")]

    def test_nexus_default(self, alignment, tmp_path):
        """Test NEXUS is the default format."""
        path = write_alignment(alignment, tmp_path / "aln.nex")
        text = path.read_text()
        assert text.startswith("#NEXUS")
        msa = AlignIO.read(str(path), "nexus")
        assert msa.get_alignment_length() == 3
        assert [r.id for r in msa] == ["t1", "t2", "t3"]

    def test_phylip(self, alignment, tmp_path):
        """Test relaxed PHYLIP output."""
        path = write_alignment(alignment, tmp_path / "aln.phy", format=AlignmentFormat.PHYLIP)
        msa = AlignIO.read(str(path), "phylip-relaxed")
        assert str(msa[1].seq) == "C-T"

    def test_deterministic(self, alignment, tmp_path):
        """Test writing twice gives identical bytes."""
        a = write_alignment(alignment, tmp_path / "a.nex")
        b = write_alignment(alignment, tmp_path / "b.nex")
        assert a.read_bytes() == b.read_bytes()

    def test_empty_fasta(self, tmp_path):
        """Test an alignment without sites can be written as FASTA."""
        empty = Alignment(taxa=["t1", "t2"])
        path = write_alignment(empty, tmp_path / "empty.fasta", format=AlignmentFormat.FASTA)
        assert path.read_text() == ">t1\n\n>t2\n\n"

    def test_empty_nexus_rejected(self, tmp_path):
        """Test an alignment without sites cannot be written as NEXUS."""
        with pytest.raises(ValueError, match="without sites"):
            write_alignment(Alignment(taxa=["t1", "t2"]), tmp_path / "empty.nex")


class TestCoordinates:
    """Tests for the coordinate listing."""

    def test_table(self, alignment):
        """Test one row per site in alignment order."""
        df = coordinates_table(alignment)
        assert list(df["site"]) == [1, 2, 3]
        assert list(df["contig"]) == ["c1", "c2", "c2"]
        assert df.loc[0, "reference"] == "chr1"
        assert df.loc[0, "reference_position"] == 104
        assert pd.isna(df.loc[1, "reference"])
        assert list(df["missing"]) == [1, 1, 0]
        assert list(df["bases"]) == ["AC", "GT", "AT"]

    def test_write(self, alignment, tmp_path):
        """Test unresolved sites have empty reference cells."""
        path = write_coordinates(alignment, tmp_path / "coords.tsv")
        lines = path.read_text().splitlines()
        assert lines[0] == "site\tcontig\tposition\treference\treference_position\tstrand\tmissing\tbases"
        assert lines[1] == "1\tc1\t5\tchr1\t104\t+\t1\tAC"
        assert lines[2] == "2\tc2\t1\t\t\t\t1\tGT"
        assert len(lines) == 4
