"""Generation service clients."""

from storyreel.adapters.pipeline.base import (
    PipelineClient,
    extract_job_id,
    guess_content_type,
    is_absolute_url,
)
from storyreel.adapters.pipeline.http import HttpPipelineClient
from storyreel.adapters.pipeline.stub import StubPipelineClient

__all__ = [
    "HttpPipelineClient",
    "PipelineClient",
    "StubPipelineClient",
    "extract_job_id",
    "guess_content_type",
    "is_absolute_url",
]
