"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from storyreel.services.repository import StoryRepository


def get_repository(request: Request) -> StoryRepository:
    """Get the repository created by the application lifespan."""
    return request.app.state.repository


RepositoryDep = Annotated[StoryRepository, Depends(get_repository)]
