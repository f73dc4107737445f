from .pipeline import run_pipeline
from .dsl import job, sh, step, secret, matrix, pipeline, on_push, on_pull_request
from .model import EventDescriptor, JobDefinition, Pipeline, PipelineStatus, Status, StepDefinition

__all__ = [
    "job", "sh", "step", "secret", "matrix", "pipeline", "on_push", "on_pull_request",
    "run_pipeline", "EventDescriptor", "JobDefinition", "Pipeline", "PipelineStatus", "Status", "StepDefinition",
]
