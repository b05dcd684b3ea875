"""
Pipeline configuration.
"""

from .pipeline_config import (
    PipelineConfig,
    CandidateRegion,
    AcceptedScale,
    DEFAULT_CANDIDATE_REGIONS,
    DEFAULT_SCALE_PATTERNS,
    DEFAULT_ACCEPTED_SCALES,
)

__all__ = [
    "PipelineConfig",
    "CandidateRegion",
    "AcceptedScale",
    "DEFAULT_CANDIDATE_REGIONS",
    "DEFAULT_SCALE_PATTERNS",
    "DEFAULT_ACCEPTED_SCALES",
]
