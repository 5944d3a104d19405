"""Adapters for external services."""

from storyreel.adapters.pipeline.base import PipelineClient

__all__ = ["PipelineClient"]
