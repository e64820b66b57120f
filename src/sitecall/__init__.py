"""
SITECALL: reference-free identification of variable sites across taxa

Turns per-taxon pileups of short reads mapped to a shared set of
assembled contigs into an alignment of sites that are fixed within each
taxon and variable between taxa, optionally placed on a reference genome.
"""

__version__ = "1.0.0"

from sitecall.config import Config, get_config
from sitecall.logging import setup_logging, get_logger
from sitecall.pipeline import RunResult, discover_taxa, run_site_calling
from sitecall.validation import validate_pileup, validate_reference_alignment

__all__ = [
    "Config",
    "get_config",
    "RunResult",
    "discover_taxa",
    "run_site_calling",
    "validate_pileup",
    "validate_reference_alignment",
    "setup_logging",
    "get_logger",
    "__version__",
]
