"""Exception taxonomy for pipeline, video and assembly failures."""

from typing import Any


class StoryreelError(Exception):
    """Base class for expected, user-reportable failures."""


class RemoteError(StoryreelError):
    """Raised on transport failures or non-2xx responses from the generation service."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class PipelineFailed(StoryreelError):
    """The storyboard pipeline reported a terminal failure."""


class PipelineTimeout(StoryreelError):
    """The storyboard pipeline did not complete within the polling bound."""


class VideoFailed(StoryreelError):
    """A shot video job reported a terminal failure."""


class VideoTimeout(StoryreelError):
    """A shot video job did not complete within the polling bound."""


class ArtifactMissing(StoryreelError):
    """A completed status payload did not name the expected file."""


class AssemblyFailed(StoryreelError):
    """ffmpeg exited non-zero or a segment could not be read or written."""

    def __init__(self, message: str, diagnostics: str | None = None) -> None:
        self.diagnostics = diagnostics
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        trace = (self.diagnostics or "").strip()
        return f"{message}: {trace}" if trace else message


class NoSegments(StoryreelError):
    """An export was requested with no video segments."""


class NotFound(StoryreelError):
    """The requested story or shot does not exist."""
