"""Media assembly: concatenate shot clips and narration into one exportable file.

Segments produced by the same upstream generator share codec and container
parameters, so concatenation uses ffmpeg's concat demuxer with stream copy and
never re-encodes video. That compatibility is assumed, not checked here.
"""

import shutil
import subprocess
import time
from collections.abc import Awaitable, Callable
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse
from uuid import uuid4

import httpx

from storyreel.adapters.pipeline.base import is_absolute_url
from storyreel.config import settings
from storyreel.domain.enums import ExportDestination
from storyreel.domain.models import ExportedMedia
from storyreel.errors import AssemblyFailed, NoSegments, RemoteError
from storyreel.logging import get_logger
from storyreel.services.media_library import MediaLibrary
from storyreel.utils.async_utils import run_blocking

logger = get_logger(__name__)

Fetcher = Callable[[str], Awaitable[bytes]]

_DEFAULT_EXTENSIONS = {"video": ".mp4", "audio": ".wav"}
_STDERR_TAIL = 2000


def resolve_ffmpeg(configured: str | None = None) -> str:
    """Locate the ffmpeg binary.

    Order: explicit configuration, ``ffmpeg`` on PATH, then the binary bundled
    with imageio-ffmpeg.

    Raises:
        AssemblyFailed: If no binary can be found.
    """
    if configured:
        return configured
    on_path = shutil.which("ffmpeg")
    if on_path:
        return on_path

    import imageio_ffmpeg

    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError as e:
        raise AssemblyFailed("ffmpeg binary not found", diagnostics=str(e)) from e


async def download_url(url: str) -> bytes:
    """Fetch a remote segment."""
    async with httpx.AsyncClient(timeout=settings.download_timeout, follow_redirects=True) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.content


def _local_path(location: str) -> Path:
    if location.startswith("file://"):
        return Path(unquote(urlparse(location).path))
    return Path(location)


def _extension(location: str, kind: str) -> str:
    suffix = PurePosixPath(urlparse(location).path).suffix
    return suffix.lower() if suffix else _DEFAULT_EXTENSIONS[kind]


def _concat_manifest(paths: list[Path]) -> str:
    lines = []
    for path in paths:
        escaped = str(path.resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


class MediaAssemblyEngine:
    """Assemble ordered segments into a single video and publish it.

    Every temporary input, intermediate and staging file lives in ``work_dir``
    and is removed when an operation finishes, whether it succeeded or not.
    """

    def __init__(
        self,
        work_dir: Path,
        library: MediaLibrary,
        preview_dir: Path | None = None,
        ffmpeg_path: str | None = None,
        fetcher: Fetcher | None = None,
        timeout: int | None = None,
        audio_codec: str = "aac",
    ) -> None:
        self.work_dir = work_dir
        self.library = library
        self.preview_dir = preview_dir or settings.preview_dir
        self.ffmpeg_path = ffmpeg_path
        self.fetcher = fetcher or download_url
        self.timeout = timeout if timeout is not None else settings.ffmpeg_timeout
        self.audio_codec = audio_codec

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def export(
        self,
        video_segments: list[str],
        title: str,
        destination: ExportDestination = ExportDestination.LIBRARY,
        audio_segments: list[str] | None = None,
    ) -> ExportedMedia:
        """Assemble and publish a video.

        Args:
            video_segments: Ordered clip locations (URLs or local paths).
            title: Display title of the exported file.
            destination: Shared collection to publish into.
            audio_segments: Optional ordered narration locations.

        Returns:
            Reference to the published file.

        Raises:
            NoSegments: If ``video_segments`` is empty. Nothing is touched.
            AssemblyFailed: On any ffmpeg or I/O failure. No output is left behind.
        """
        if not video_segments:
            raise NoSegments("Nothing to export: no video segments")

        temp_files: list[Path] = []
        logger.info(
            "assembly_started",
            title=title,
            video_segments=len(video_segments),
            audio_segments=len(audio_segments or []),
            destination=destination.value,
        )
        try:
            await self._prepare_work_dir()
            videos = [await self._materialize(s, "video", temp_files) for s in video_segments]
            staged = await self._join(videos, "video", temp_files)

            if audio_segments:
                audios = [await self._materialize(s, "audio", temp_files) for s in audio_segments]
                merged_audio = await self._join(audios, "audio", temp_files)
                muxed = self._temp_path("muxed", ".mp4", temp_files)
                await run_blocking(self._run_ffmpeg, self._mux_args(staged, merged_audio, muxed))
                staged = muxed

            try:
                exported = await run_blocking(self.library.publish, staged, title, destination)
            except OSError as e:
                raise AssemblyFailed(f"Could not write export: {e}") from e

            logger.info("assembly_completed", title=title, path=exported.path)
            return exported
        except AssemblyFailed as e:
            logger.error("assembly_failed", title=title, error=str(e))
            raise
        finally:
            await run_blocking(self._cleanup, temp_files)

    async def merge_audio_only(self, segments: list[str]) -> Path | None:
        """Merge narration segments into a single preview track.

        Best effort: returns None for empty input or when merging fails.
        """
        if not segments:
            return None

        temp_files: list[Path] = []
        output: Path | None = None
        try:
            await self._prepare_work_dir()
            audios = [await self._materialize(s, "audio", temp_files) for s in segments]
            await run_blocking(self.preview_dir.mkdir, parents=True, exist_ok=True)
            output = self.preview_dir / self._unique_name("preview_audio", audios[0].suffix)
            if len(audios) == 1:
                await run_blocking(self._copy, audios[0], output)
            else:
                await self._concat(audios, output, temp_files)
            logger.info("preview_audio_merged", segments=len(segments), path=str(output))
            return output
        except (AssemblyFailed, OSError) as e:
            logger.warning("preview_audio_merge_failed", segments=len(segments), error=str(e))
            if output is not None:
                await run_blocking(output.unlink, missing_ok=True)
            return None
        finally:
            await run_blocking(self._cleanup, temp_files)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _unique_name(kind: str, ext: str) -> str:
        return f"{kind}_{time.time_ns()}_{uuid4().hex[:8]}{ext}"

    async def _prepare_work_dir(self) -> None:
        try:
            await run_blocking(self.work_dir.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise AssemblyFailed(f"Could not create work directory {self.work_dir}: {e}") from e

    def _temp_path(self, kind: str, ext: str, temp_files: list[Path]) -> Path:
        """Reserve a unique name in ``work_dir``, which the caller has already created."""
        path = self.work_dir / self._unique_name(kind, ext)
        temp_files.append(path)
        return path

    async def _materialize(self, location: str, kind: str, temp_files: list[Path]) -> Path:
        """Fetch or copy one segment into the work directory."""
        target = self._temp_path(kind, _extension(location, kind), temp_files)
        try:
            if is_absolute_url(location):
                data = await self.fetcher(location)
                await run_blocking(target.write_bytes, data)
            else:
                await run_blocking(self._copy, _local_path(location), target)
        except (OSError, httpx.HTTPError, RemoteError) as e:
            raise AssemblyFailed(f"Could not read segment {location}: {e}") from e
        return target

    async def _join(self, segments: list[Path], kind: str, temp_files: list[Path]) -> Path:
        """Use a lone segment as-is, otherwise concatenate with stream copy."""
        if len(segments) == 1:
            return segments[0]
        output = self._temp_path(f"{kind}_joined", segments[0].suffix, temp_files)
        await self._concat(segments, output, temp_files)
        return output

    async def _concat(self, segments: list[Path], output: Path, temp_files: list[Path]) -> None:
        manifest = self._temp_path("concat", ".txt", temp_files)
        await run_blocking(manifest.write_text, _concat_manifest(segments), encoding="utf-8")
        args = ["-f", "concat", "-safe", "0", "-i", str(manifest), "-c", "copy", str(output)]
        await run_blocking(self._run_ffmpeg, args)

    def _mux_args(self, video: Path, audio: Path, output: Path) -> list[str]:
        return [
            "-i", str(video),
            "-i", str(audio),
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "copy",
            "-c:a", self.audio_codec,
            "-shortest",
            str(output),
        ]  # fmt: skip

    # ------------------------------------------------------------------
    # Blocking helpers (run on the I/O pool)
    # ------------------------------------------------------------------

    def _run_ffmpeg(self, args: list[str]) -> None:
        """Invoke ffmpeg, raising AssemblyFailed with the stderr tail on failure."""
        cmd = [resolve_ffmpeg(self.ffmpeg_path), "-y", "-hide_banner", *args]
        logger.debug("assembly_ffmpeg_invoked", args=args)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise AssemblyFailed(f"ffmpeg not executable: {cmd[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise AssemblyFailed(f"ffmpeg timed out after {self.timeout}s") from e

        if result.returncode != 0:
            diagnostics = (result.stderr or "")[-_STDERR_TAIL:]
            logger.error(
                "assembly_ffmpeg_failed",
                returncode=result.returncode,
                stderr=diagnostics[-500:],
            )
            raise AssemblyFailed(
                f"ffmpeg exited with code {result.returncode}",
                diagnostics=diagnostics,
            )

    @staticmethod
    def _copy(source: Path, target: Path) -> None:
        shutil.copyfile(source, target)

    @staticmethod
    def _cleanup(paths: list[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("assembly_cleanup_failed", path=str(path), error=str(e))
