import asyncio
import json
import logging
import subprocess
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Set, Union

import ffmpeg
import httpx

from services.errors import ExtractionError, TransportError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

THUMBNAIL_FILENAME = "thumbnail.jpg"
DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class FrameExtractor(Protocol):
    """Produces one encoded still image from a local video file."""

    def extract_frame(self, video_path: PathLike, offset_seconds: float) -> bytes:
        ...

    def cancel(self) -> None:
        """Stop in-flight work; called from another thread."""
        ...


def _stderr_tail(stderr: Union[bytes, str, None], max_lines: int = 15, max_chars: int = 2000) -> str:
    if not stderr:
        return ""
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    lines = [ln.strip() for ln in stderr.replace("\r", "\n").split("\n") if ln.strip()]
    out = "\n".join(lines[-max_lines:])
    return out[-max_chars:]


def _duration_from_probe(probe: Dict[str, Any]) -> float:
    fmt = probe.get("format", {}) or {}
    duration = float(fmt.get("duration", 0.0) or 0.0)
    if duration <= 0:
        for stream in probe.get("streams", []) or []:
            if stream.get("codec_type") == "video":
                duration = float(stream.get("duration", 0.0) or 0.0)
                if duration > 0:
                    break
    return max(0.0, duration)


def probe_duration_seconds(
    video_path: PathLike,
    ffprobe_path: str = "ffprobe",
    timeout: Optional[float] = None,
    on_spawn: Optional[Callable[[subprocess.Popen], None]] = None,
) -> float:
    """
    Probe video metadata and return duration in seconds (0.0 when unknown).

    ffprobe is killed once `timeout` seconds pass.
    """
    # Same argv ffmpeg.probe builds
    args = [ffprobe_path, "-show_format", "-show_streams", "-of", "json", str(video_path)]
    try:
        process = subprocess.Popen(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        logger.warning(f"Could not start ffprobe ({ffprobe_path}): {e}")
        return 0.0
    if on_spawn is not None:
        on_spawn(process)

    try:
        stdout, stderr = process.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.communicate()
        logger.warning(f"ffprobe timed out after {timeout}s for {video_path}")
        return 0.0

    if process.returncode != 0:
        logger.warning(f"Could not probe video duration for {video_path}: {_stderr_tail(stderr) or process.returncode}")
        return 0.0
    try:
        return _duration_from_probe(json.loads(stdout.decode("utf-8", errors="replace")))
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Unreadable ffprobe output for {video_path}: {e}")
        return 0.0


class FFmpegFrameExtractor:
    """Grabs a single frame with ffmpeg and returns the JPEG bytes."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        *,
        size: str = "1920x1080",
        timeout_seconds: float = 120,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.size = size
        self.timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        self._processes: Set[subprocess.Popen] = set()
        self._cancelled = threading.Event()

    def _track(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.add(process)
        # cancel() may have run between spawn and registration
        if self._cancelled.is_set():
            process.kill()

    def _untrack(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.discard(process)

    def cancel(self) -> None:
        """Kill running ffprobe/ffmpeg children; the extractor refuses new work afterwards."""
        self._cancelled.set()
        with self._lock:
            running = list(self._processes)
        for process in running:
            if process.poll() is None:
                logger.warning("Killing extraction process (pid %s)", process.pid)
                process.kill()

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise ExtractionError("Frame extraction cancelled")

    def _effective_offset(self, video_path: Path, offset_seconds: float) -> float:
        # Very short clips: seeking past the end yields no frame at all.
        processes = []

        def _register(process: subprocess.Popen) -> None:
            processes.append(process)
            self._track(process)

        try:
            duration = probe_duration_seconds(
                video_path,
                self.ffprobe_path,
                timeout=self.timeout_seconds,
                on_spawn=_register,
            )
        finally:
            for process in processes:
                self._untrack(process)
        if duration > 0 and offset_seconds >= duration:
            return duration / 2
        return offset_seconds

    def extract_frame(self, video_path: PathLike, offset_seconds: float) -> bytes:
        video_path = Path(video_path)
        output_path = video_path.parent / THUMBNAIL_FILENAME
        self._check_cancelled()
        offset = self._effective_offset(video_path, offset_seconds)
        self._check_cancelled()

        # ffmpeg -nostdin -ss 0.1 -i video.mp4 -frames:v 1 -s 1920x1080 thumbnail.jpg
        stream = (
            ffmpeg
            .input(str(video_path), ss=offset)
            .output(str(output_path), vframes=1, s=self.size)
            .global_args("-nostdin")
            .overwrite_output()
        )
        try:
            process = stream.run_async(cmd=self.ffmpeg_path, pipe_stdout=True, pipe_stderr=True)
        except OSError as exc:
            raise ExtractionError(f"Could not start ffmpeg ({self.ffmpeg_path}): {exc}") from exc
        self._track(process)

        try:
            try:
                _, stderr = process.communicate(timeout=self.timeout_seconds)
            except subprocess.TimeoutExpired:
                process.kill()
                _, stderr = process.communicate()
                raise ExtractionError(
                    f"ffmpeg timed out after {self.timeout_seconds}s",
                    stderr=_stderr_tail(stderr),
                )
        finally:
            self._untrack(process)

        self._check_cancelled()

        if process.returncode != 0:
            tail = _stderr_tail(stderr)
            raise ExtractionError(
                f"ffmpeg failed (exit {process.returncode}): {tail or 'no stderr'}",
                stderr=tail,
                returncode=process.returncode,
            )

        if not output_path.exists():
            raise ExtractionError("ffmpeg produced no thumbnail file")
        data = output_path.read_bytes()
        if not data:
            raise ExtractionError("ffmpeg produced an empty thumbnail file")
        return data


async def download_video(
    client: httpx.AsyncClient,
    url: str,
    destination: PathLike,
    *,
    timeout_seconds: float,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> Path:
    """
    Stream a remote video to `destination`.
    Non-2xx responses, transport errors and timeouts raise TransportError.
    """
    destination = Path(destination)

    async def _stream() -> int:
        written = 0
        async with client.stream("GET", url, follow_redirects=True) as response:
            if not response.is_success:
                raise TransportError(
                    f"Failed to download video: {response.status_code} {response.reason_phrase}",
                    status_code=response.status_code,
                )
            with destination.open("wb") as handle:
                async for chunk in response.aiter_bytes(chunk_size):
                    handle.write(chunk)
                    written += len(chunk)
        return written

    try:
        written = await asyncio.wait_for(_stream(), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise TransportError(f"Video download timed out after {timeout_seconds}s") from exc
    except httpx.HTTPError as exc:
        raise TransportError(f"Video download failed: {exc}") from exc

    if written == 0:
        raise TransportError("Video download returned an empty body")
    return destination
