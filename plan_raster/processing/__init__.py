"""
Job orchestration.
"""

from .pipeline import PlanPipeline, PipelineResult, JobState, JobStateMachine, TileStats

__all__ = [
    "PlanPipeline",
    "PipelineResult",
    "JobState",
    "JobStateMachine",
    "TileStats",
]
