"""Pipeline module — scheduling primitives and the stage simulator."""

from hashwatch.pipeline.clock import IntervalDriver, ManualScheduler, Scheduler
from hashwatch.pipeline.simulator import PipelineRun, PipelineSimulator, PipelineStage

__all__ = [
    "IntervalDriver",
    "ManualScheduler",
    "Scheduler",
    "PipelineRun",
    "PipelineSimulator",
    "PipelineStage",
]
