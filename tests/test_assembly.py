"""Tests for media assembly and the media library."""

import subprocess
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from storyreel.domain.enums import ExportDestination
from storyreel.errors import AssemblyFailed, NoSegments
from storyreel.services.assembly import MediaAssemblyEngine, resolve_ffmpeg
from storyreel.services.media_library import MediaLibrary, sanitize_name


def _segment(directory: Path, name: str, data: bytes) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(data)
    return path


class FakeFfmpeg:
    """Records ffmpeg invocations and writes a placeholder output file."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.manifests: list[str] = []

    def __call__(self, args: list[str]) -> None:
        self.calls.append(args)
        if "concat" in args:
            manifest = Path(args[args.index("-i") + 1])
            self.manifests.append(manifest.read_text(encoding="utf-8"))
        Path(args[-1]).write_bytes(b"ffmpeg-output")


class TestMediaLibrary:
    def test_publish_to_library(self, tmp_path: Path) -> None:
        library = MediaLibrary(tmp_path / "root")
        source = _segment(tmp_path, "src.mp4", b"data")

        exported = library.publish(source, "雨夜", ExportDestination.LIBRARY)

        assert exported.display_name == "雨夜.mp4"
        assert exported.relative_folder == "Movies/storyreel"
        assert exported.destination == "library"
        assert exported.mime_type == "video/mp4"
        assert Path(exported.path).read_bytes() == b"data"

    def test_downloads_folder_and_name_collision(self, tmp_path: Path) -> None:
        library = MediaLibrary(tmp_path / "root")
        source = _segment(tmp_path, "src.mp4", b"data")

        first = library.publish(source, "story", ExportDestination.DOWNLOADS)
        second = library.publish(source, "story", ExportDestination.DOWNLOADS)

        assert first.relative_folder == "Download/storyreel"
        assert first.display_name == "story.mp4"
        assert second.display_name == "story (1).mp4"

    def test_failed_copy_leaves_nothing_behind(self, tmp_path: Path) -> None:
        library = MediaLibrary(tmp_path / "root")
        source = _segment(tmp_path, "src.mp4", b"complete-data")

        def short_copy(src: Path, dst: Path) -> None:
            Path(dst).write_bytes(b"comp")
            raise OSError(28, "No space left on device")

        with patch("storyreel.services.media_library.shutil.copyfile", side_effect=short_copy):
            with pytest.raises(OSError, match="No space left"):
                library.publish(source, "story", ExportDestination.LIBRARY)

        folder = library.root / library.relative_folder(ExportDestination.LIBRARY)
        assert list(folder.iterdir()) == []

        retried = library.publish(source, "story", ExportDestination.LIBRARY)
        assert retried.display_name == "story.mp4"
        assert Path(retried.path).read_bytes() == b"complete-data"

    def test_failed_rename_releases_claimed_name(self, tmp_path: Path) -> None:
        library = MediaLibrary(tmp_path / "root")
        source = _segment(tmp_path, "src.mp4", b"data")

        with patch(
            "storyreel.services.media_library.os.replace",
            side_effect=PermissionError("read-only share"),
        ):
            with pytest.raises(OSError):
                library.publish(source, "story", ExportDestination.DOWNLOADS)

        folder = library.root / library.relative_folder(ExportDestination.DOWNLOADS)
        assert list(folder.iterdir()) == []

    def test_concurrent_publishes_get_distinct_names(self, tmp_path: Path) -> None:
        library = MediaLibrary(tmp_path / "root")
        sources = [
            _segment(tmp_path / "src", f"{i}.mp4", f"payload-{i}".encode() * 1000)
            for i in range(8)
        ]

        with ThreadPoolExecutor(max_workers=8) as pool:
            exported = list(
                pool.map(
                    lambda s: library.publish(s, "story", ExportDestination.LIBRARY),
                    sources,
                )
            )

        names = {e.display_name for e in exported}
        assert len(names) == 8
        for source, media in zip(sources, exported, strict=True):
            assert Path(media.path).read_bytes() == source.read_bytes()

        folder = library.root / library.relative_folder(ExportDestination.LIBRARY)
        assert sorted(p.name for p in folder.iterdir()) == sorted(names)

    @pytest.mark.parametrize(
        ("title", "expected"),
        [
            ("a/b:c", "a_b_c"),
            ("  ", "storyreel"),
            ("...", "storyreel"),
            ("正常标题", "正常标题"),
        ],
    )
    def test_sanitize_name(self, title: str, expected: str) -> None:
        assert sanitize_name(title) == expected


class TestResolveFfmpeg:
    def test_configured_path_wins(self) -> None:
        assert resolve_ffmpeg("/opt/ffmpeg") == "/opt/ffmpeg"

    def test_path_lookup(self) -> None:
        with patch("storyreel.services.assembly.shutil.which", return_value="/usr/bin/ffmpeg"):
            assert resolve_ffmpeg(None) == "/usr/bin/ffmpeg"

    def test_bundled_fallback(self) -> None:
        with (
            patch("storyreel.services.assembly.shutil.which", return_value=None),
            patch("imageio_ffmpeg.get_ffmpeg_exe", return_value="/bundled/ffmpeg"),
        ):
            assert resolve_ffmpeg(None) == "/bundled/ffmpeg"


class TestExport:
    @pytest.mark.asyncio
    async def test_single_segment_is_byte_identical(
        self, assembly: MediaAssemblyEngine, tmp_path: Path
    ) -> None:
        payload = bytes(range(256)) * 64
        source = _segment(tmp_path / "src", "clip.mp4", payload)

        with patch.object(assembly, "_run_ffmpeg") as mock_ffmpeg:
            exported = await assembly.export([str(source)], "Single", ExportDestination.LIBRARY)

        mock_ffmpeg.assert_not_called()
        assert Path(exported.path).read_bytes() == payload
        assert list(assembly.work_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_file_url_segment(self, assembly: MediaAssemblyEngine, tmp_path: Path) -> None:
        source = _segment(tmp_path / "src", "clip.mp4", b"file-url")

        exported = await assembly.export([source.as_uri()], "FromUri")

        assert Path(exported.path).read_bytes() == b"file-url"

    @pytest.mark.asyncio
    async def test_empty_segments_perform_no_io(self, tmp_path: Path) -> None:
        fetcher = AsyncMock()
        library = MagicMock()
        engine = MediaAssemblyEngine(
            work_dir=tmp_path / "work",
            library=library,
            preview_dir=tmp_path / "previews",
            fetcher=fetcher,
        )

        with pytest.raises(NoSegments):
            await engine.export([], "Empty", audio_segments=["http://host/a.wav"])

        fetcher.assert_not_awaited()
        library.publish.assert_not_called()
        assert not (tmp_path / "work").exists()

    @pytest.mark.asyncio
    async def test_multiple_segments_concat_in_order(
        self, assembly: MediaAssemblyEngine, tmp_path: Path
    ) -> None:
        first = _segment(tmp_path / "src", "a.mp4", b"A")
        second = _segment(tmp_path / "src", "b.mp4", b"B")
        fake = FakeFfmpeg()

        with patch.object(assembly, "_run_ffmpeg", side_effect=fake):
            exported = await assembly.export([str(first), str(second)], "Joined")

        assert len(fake.calls) == 1
        args = fake.calls[0]
        assert args[:4] == ["-f", "concat", "-safe", "0"]
        assert args[args.index("-c") + 1] == "copy"

        lines = fake.manifests[0].strip().splitlines()
        assert len(lines) == 2
        assert lines[0].startswith("file '") and "video_" in lines[0]
        assert Path(exported.path).read_bytes() == b"ffmpeg-output"
        assert list(assembly.work_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_audio_is_muxed_with_shortest(
        self, assembly: MediaAssemblyEngine, tmp_path: Path
    ) -> None:
        video = _segment(tmp_path / "src", "v.mp4", b"V")
        audio = [
            _segment(tmp_path / "src", "n1.wav", b"1"),
            _segment(tmp_path / "src", "n2.wav", b"2"),
        ]
        fake = FakeFfmpeg()

        with patch.object(assembly, "_run_ffmpeg", side_effect=fake):
            await assembly.export(
                [str(video)], "Muxed", audio_segments=[str(p) for p in audio]
            )

        # Audio concat, then the mux step
        assert len(fake.calls) == 2
        mux = fake.calls[1]
        assert mux[mux.index("-c:v") + 1] == "copy"
        assert mux[mux.index("-c:a") + 1] == "aac"
        assert "-shortest" in mux
        assert ["-map", "0:v:0", "-map", "1:a:0"] == mux[4:8]
        assert list(assembly.work_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_remote_segments_use_fetcher(self, tmp_path: Path, library: MediaLibrary) -> None:
        fetcher = AsyncMock(return_value=b"remote-bytes")
        engine = MediaAssemblyEngine(
            work_dir=tmp_path / "work",
            library=library,
            preview_dir=tmp_path / "previews",
            fetcher=fetcher,
        )

        exported = await engine.export(["https://cdn.example.com/clip.mp4"], "Remote")

        fetcher.assert_awaited_once_with("https://cdn.example.com/clip.mp4")
        assert Path(exported.path).read_bytes() == b"remote-bytes"

    @pytest.mark.asyncio
    async def test_ffmpeg_failure_leaves_no_residue(
        self, assembly: MediaAssemblyEngine, library: MediaLibrary, tmp_path: Path
    ) -> None:
        segments = [
            str(_segment(tmp_path / "src", "a.mp4", b"A")),
            str(_segment(tmp_path / "src", "b.mp4", b"B")),
        ]

        with patch.object(
            assembly,
            "_run_ffmpeg",
            side_effect=AssemblyFailed("ffmpeg exited with code 1", diagnostics="Invalid data"),
        ):
            with pytest.raises(AssemblyFailed) as exc_info:
                await assembly.export(segments, "Broken")

        assert exc_info.value.diagnostics == "Invalid data"
        assert list(assembly.work_dir.iterdir()) == []
        assert not library.root.exists()

    @pytest.mark.asyncio
    async def test_unreadable_segment_fails(self, assembly: MediaAssemblyEngine, tmp_path: Path) -> None:
        with pytest.raises(AssemblyFailed, match="Could not read segment"):
            await assembly.export([str(tmp_path / "missing.mp4")], "Missing")

        assert list(assembly.work_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_uncreatable_work_dir_fails(self, tmp_path: Path, library: MediaLibrary) -> None:
        blocker = tmp_path / "work"
        blocker.write_bytes(b"")
        source = _segment(tmp_path / "src", "clip.mp4", b"clip")
        engine = MediaAssemblyEngine(
            work_dir=blocker,
            library=library,
            preview_dir=tmp_path / "previews",
            fetcher=AsyncMock(),
        )

        with pytest.raises(AssemblyFailed, match="Could not create work directory"):
            await engine.export([str(source)], "Blocked")

        assert await engine.merge_audio_only([str(source)]) is None
        assert not library.root.exists()

    def test_run_ffmpeg_nonzero_exit(self, assembly: MediaAssemblyEngine) -> None:
        completed = MagicMock(returncode=1, stderr="x" * 5000)

        with (
            patch("storyreel.services.assembly.resolve_ffmpeg", return_value="ffmpeg"),
            patch("storyreel.services.assembly.subprocess.run", return_value=completed),
        ):
            with pytest.raises(AssemblyFailed) as exc_info:
                assembly._run_ffmpeg(["-i", "in.mp4", "out.mp4"])

        assert len(exc_info.value.diagnostics) == 2000

    def test_run_ffmpeg_missing_binary(self, assembly: MediaAssemblyEngine) -> None:
        with (
            patch("storyreel.services.assembly.resolve_ffmpeg", return_value="/nope/ffmpeg"),
            patch("storyreel.services.assembly.subprocess.run", side_effect=FileNotFoundError),
        ):
            with pytest.raises(AssemblyFailed, match="not executable"):
                assembly._run_ffmpeg(["out.mp4"])


class TestMergeAudioOnly:
    @pytest.mark.asyncio
    async def test_empty_returns_none(self, assembly: MediaAssemblyEngine) -> None:
        assert await assembly.merge_audio_only([]) is None

    @pytest.mark.asyncio
    async def test_single_segment_copied_to_preview_dir(
        self, assembly: MediaAssemblyEngine, tmp_path: Path
    ) -> None:
        audio = _segment(tmp_path / "src", "n.wav", b"narration")

        merged = await assembly.merge_audio_only([str(audio)])

        assert merged is not None
        assert merged.parent == assembly.preview_dir
        assert merged.read_bytes() == b"narration"
        assert list(assembly.work_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_failure_returns_none(self, assembly: MediaAssemblyEngine, tmp_path: Path) -> None:
        audio = [
            str(_segment(tmp_path / "src", "1.wav", b"1")),
            str(_segment(tmp_path / "src", "2.wav", b"2")),
        ]

        with patch.object(assembly, "_run_ffmpeg", side_effect=AssemblyFailed("boom")):
            assert await assembly.merge_audio_only(audio) is None

        assert list(assembly.preview_dir.iterdir()) == []
        assert list(assembly.work_dir.iterdir()) == []


@pytest.fixture(scope="module")
def ffmpeg_exe() -> str:
    return resolve_ffmpeg(None)


def _render(ffmpeg: str, source: str, codec: list[str], output: Path) -> Path:
    output.parent.mkdir(parents=True, exist_ok=True)
    subprocess.run(
        [ffmpeg, "-y", "-hide_banner", "-f", "lavfi", "-i", source, *codec, str(output)],
        check=True,
        capture_output=True,
        timeout=60,
    )
    return output


def _stream_info(ffmpeg: str, path: Path) -> str:
    # ffmpeg exits non-zero without an output file but still prints the input streams
    completed = subprocess.run(
        [ffmpeg, "-hide_banner", "-i", str(path)],
        capture_output=True,
        text=True,
        timeout=60,
    )
    return completed.stderr


class TestExportWithFfmpeg:
    """Runs the real ffmpeg binary against small generated clips."""

    @pytest.mark.asyncio
    async def test_concat_and_mux(
        self, assembly: MediaAssemblyEngine, ffmpeg_exe: str, tmp_path: Path
    ) -> None:
        src = tmp_path / "src"
        clips = [
            _render(
                ffmpeg_exe,
                "testsrc=duration=1:size=64x64:rate=10",
                ["-c:v", "mpeg4", "-pix_fmt", "yuv420p"],
                src / f"clip_{i}.mp4",
            )
            for i in range(2)
        ]
        narration = [
            _render(
                ffmpeg_exe,
                f"sine=frequency={freq}:duration=1",
                ["-c:a", "pcm_s16le"],
                src / f"line_{freq}.wav",
            )
            for freq in (440, 660)
        ]

        exported = await assembly.export(
            [str(p) for p in clips],
            "Generated",
            audio_segments=[str(p) for p in narration],
        )

        output = Path(exported.path)
        assert output.stat().st_size > 0
        info = _stream_info(ffmpeg_exe, output)
        assert "Video: mpeg4" in info
        assert "Audio: aac" in info
        assert list(assembly.work_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_invalid_segments_report_ffmpeg_output(
        self, assembly: MediaAssemblyEngine, library: MediaLibrary, tmp_path: Path
    ) -> None:
        segments = [
            str(_segment(tmp_path / "src", "a.mp4", b"not a video")),
            str(_segment(tmp_path / "src", "b.mp4", b"still not a video")),
        ]

        with pytest.raises(AssemblyFailed) as exc_info:
            await assembly.export(segments, "Garbage")

        diagnostics = (exc_info.value.diagnostics or "").strip()
        assert diagnostics
        assert str(exc_info.value).startswith("ffmpeg exited with code ")
        assert diagnostics in str(exc_info.value)
        assert list(assembly.work_dir.iterdir()) == []
        assert not library.root.exists()
