"""
SITECALL Configuration Module

Centralized configuration for site calling runs.
Supports environment variables and sensible defaults.

Configuration Priority (highest to lowest):
1. Explicit arguments (constructor or command line)
2. Environment variables
3. Built-in defaults

Environment Variables:
    SITECALL_MIN_READS          - Minimum reads for a consensus call (default: 3)
    SITECALL_MISSING            - Maximum taxa without a call at a kept site
                                  (default: number of taxa - 2)
    SITECALL_REQUIRE_REFERENCE  - Keep only sites with a reference coordinate (true/false)
    SITECALL_MIN_MAPQ           - Minimum MAPQ for contig placements (default: 0)
    SITECALL_THREADS            - Worker processes for per-taxon calling (default: 4)
    SITECALL_FORMAT             - Alignment format: nexus, fasta or phylip
    SITECALL_PILEUP_SUFFIX      - Pileup file suffix used for taxon discovery
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from sitecall.sites.merge import default_missing_threshold
from sitecall.sites.models import AlignmentFormat

logger = logging.getLogger(__name__)

# Singleton config instance for the command line tools
_config_instance: Optional["Config"] = None

DEFAULT_MIN_READS = 3
DEFAULT_MIN_MAPQ = 0
DEFAULT_THREADS = 4
DEFAULT_FORMAT = AlignmentFormat.NEXUS.value
DEFAULT_PILEUP_SUFFIX = ".pileups"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class Config:
    """
    SITECALL configuration container.

    Fields left as None are filled from the environment, then from
    defaults. ``missing_threshold`` stays None unless set, meaning
    "number of taxa - 2" for the run it is applied to.

    Attributes:
        min_reads: Minimum read depth for a consensus call
        missing_threshold: Maximum number of taxa without a call at a kept site
        require_reference: Drop sites that cannot be placed on the reference
        min_mapping_quality: Minimum MAPQ for a contig placement to be used
        threads: Worker processes for per-taxon calling
        output_format: Alignment output format name
        gap_char: Character written for taxa without a call
        pileup_suffix: File suffix identifying pileups during taxon discovery
    """

    min_reads: Optional[int] = None
    missing_threshold: Optional[int] = None
    require_reference: Optional[bool] = None
    min_mapping_quality: Optional[int] = None
    threads: Optional[int] = None
    output_format: Optional[str] = None
    gap_char: str = "-"
    pileup_suffix: Optional[str] = None

    # Internal state
    _initialized: bool = field(default=False, repr=False)

    def __post_init__(self):
        """Fill unset fields from environment and defaults."""
        if not self._initialized:
            self._load_from_environment()
            self._apply_defaults()
            self._initialized = True

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables for unset fields."""

        if self.min_reads is None:
            self.min_reads = _env_int("SITECALL_MIN_READS")
        if self.missing_threshold is None:
            self.missing_threshold = _env_int("SITECALL_MISSING")
        if self.min_mapping_quality is None:
            self.min_mapping_quality = _env_int("SITECALL_MIN_MAPQ")
        if self.threads is None:
            self.threads = _env_int("SITECALL_THREADS")

        if self.require_reference is None and os.environ.get("SITECALL_REQUIRE_REFERENCE"):
            value = os.environ["SITECALL_REQUIRE_REFERENCE"].strip().lower()
            if value in _TRUE_VALUES:
                self.require_reference = True
            elif value in _FALSE_VALUES:
                self.require_reference = False
            else:
                logger.warning("Ignoring invalid SITECALL_REQUIRE_REFERENCE=%r", value)

        if self.output_format is None and os.environ.get("SITECALL_FORMAT"):
            self.output_format = os.environ["SITECALL_FORMAT"].strip().lower()
        if self.pileup_suffix is None and os.environ.get("SITECALL_PILEUP_SUFFIX"):
            self.pileup_suffix = os.environ["SITECALL_PILEUP_SUFFIX"]

    def _apply_defaults(self) -> None:
        """Fill anything still unset with built-in defaults."""
        if self.min_reads is None:
            self.min_reads = DEFAULT_MIN_READS
        if self.require_reference is None:
            self.require_reference = False
        if self.min_mapping_quality is None:
            self.min_mapping_quality = DEFAULT_MIN_MAPQ
        if self.threads is None:
            self.threads = DEFAULT_THREADS
        if self.output_format is None:
            self.output_format = DEFAULT_FORMAT
        if self.pileup_suffix is None:
            self.pileup_suffix = DEFAULT_PILEUP_SUFFIX

    @property
    def alignment_format(self) -> AlignmentFormat:
        """Output format as an AlignmentFormat.

        Raises:
            ValueError: If the format name is not supported
        """
        return AlignmentFormat(self.output_format)

    def missing_threshold_for(self, num_taxa: int) -> int:
        """Missing-data threshold for a run with ``num_taxa`` taxa."""
        if self.missing_threshold is not None:
            return self.missing_threshold
        return default_missing_threshold(num_taxa)

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate configuration.

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        errors = []

        if self.min_reads < 1:
            errors.append(f"min_reads must be a positive integer, got {self.min_reads}")
        if self.missing_threshold is not None and self.missing_threshold < 0:
            errors.append(f"missing_threshold must be >= 0, got {self.missing_threshold}")
        if self.min_mapping_quality < 0:
            errors.append(f"min_mapping_quality must be >= 0, got {self.min_mapping_quality}")
        if self.threads < 1:
            errors.append(f"threads must be >= 1, got {self.threads}")

        formats = [f.value for f in AlignmentFormat]
        if self.output_format not in formats:
            errors.append(f"Unsupported output format '{self.output_format}' (choose from {formats})")

        if len(self.gap_char) != 1 or self.gap_char.upper() in "ACGT":
            errors.append(f"gap_char must be a single non-base character, got '{self.gap_char}'")

        return len(errors) == 0, errors

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        return {
            "min_reads": self.min_reads,
            "missing_threshold": self.missing_threshold,
            "require_reference": self.require_reference,
            "min_mapping_quality": self.min_mapping_quality,
            "threads": self.threads,
            "output_format": self.output_format,
            "gap_char": self.gap_char,
            "pileup_suffix": self.pileup_suffix,
        }

    def print_status(self) -> None:
        """Print configuration status to stdout."""
        print("SITECALL Configuration Status")
        print("=" * 50)
        missing = self.missing_threshold if self.missing_threshold is not None else "taxa - 2"
        print(f"Minimum reads:      {self.min_reads}")
        print(f"Missing threshold:  {missing}")
        print(f"Require reference:  {self.require_reference}")
        print(f"Minimum MAPQ:       {self.min_mapping_quality}")
        print(f"Threads:            {self.threads}")
        print(f"Output format:      {self.output_format}")
        print(f"Pileup suffix:      {self.pileup_suffix}")
        print("=" * 50)


def _env_int(name: str) -> Optional[int]:
    """Read an integer environment variable; invalid values are ignored."""
    value = os.environ.get(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r (expected an integer)", name, value)
        return None


def get_config() -> Config:
    """
    Get the global configuration instance.

    Returns:
        Config: The singleton configuration instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance


def reset_config() -> None:
    """Reset the global configuration instance (useful for testing)."""
    global _config_instance
    _config_instance = None
