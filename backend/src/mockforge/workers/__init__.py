"""Background workers for async processing tasks."""

from mockforge.workers.pipeline_worker import PipelineScheduler

__all__ = ["PipelineScheduler"]
