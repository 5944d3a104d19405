"""Database layer."""

from storyreel.db.models import AssetModel, Base, ShotModel, StoryModel, TaskModel
from storyreel.db.session import (
    build_engine,
    build_session_factory,
    get_engine,
    init_db,
    session_scope,
)
from storyreel.db.store import StoreWriter, StoryStore

__all__ = [
    "Base",
    "build_engine",
    "build_session_factory",
    "get_engine",
    "init_db",
    "session_scope",
    "StoreWriter",
    "StoryStore",
    # Models
    "AssetModel",
    "ShotModel",
    "StoryModel",
    "TaskModel",
]
