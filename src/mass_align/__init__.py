"""
mass_align: join alignment of LC-MS feature tables across runs.
"""

from .config import AlignConfig, load_config
from .engine import AlignmentResult, JoinAligner, PassReport, align_tables, assign_greedy
from .errors import AlignmentCancelled, ConfigurationError, RecordError
from .isotopes import IsotopeComparison, isotope_pattern_similarity
from .model import CandidatePair, FeatureRecord, IsotopePattern, MasterTable, Row
from .scoring import Scorer
from .tolerance import MZTolerance, RTTolerance

__version__ = "0.1.0"

__all__ = [
    "AlignConfig",
    "load_config",
    "AlignmentResult",
    "JoinAligner",
    "PassReport",
    "align_tables",
    "assign_greedy",
    "AlignmentCancelled",
    "ConfigurationError",
    "RecordError",
    "IsotopeComparison",
    "isotope_pattern_similarity",
    "CandidatePair",
    "FeatureRecord",
    "IsotopePattern",
    "MasterTable",
    "Row",
    "Scorer",
    "MZTolerance",
    "RTTolerance",
    "__version__",
]
