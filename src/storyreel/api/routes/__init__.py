"""API route modules."""

from storyreel.api.routes import assets, health, stories, tasks

__all__ = ["assets", "health", "stories", "tasks"]
