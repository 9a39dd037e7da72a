"""FFmpeg/ffprobe media utilities.

Probing, thumbnailing, frame sampling and audio extraction for uploaded
videos. All external processes are bounded by a timeout and killed when it
expires.
"""

import asyncio
import json
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from app.core.config import settings
from app.modules.video.exceptions import MediaProbeError
from app.modules.video.models import AspectRatio


@dataclass
class MediaInfo:
    """Probed metadata of a video."""

    duration: float
    width: int
    height: int
    bitrate: Optional[int] = None
    fps: Optional[float] = None
    codec: Optional[str] = None
    has_audio: bool = False


# (aspect ratio, lower bound, upper bound) on width / height
ASPECT_RATIO_BANDS: list[tuple[AspectRatio, float, float]] = [
    (AspectRatio.VERTICAL_9_16, 0.5, 0.65),
    (AspectRatio.PORTRAIT_4_5, 0.75, 0.85),
    (AspectRatio.SQUARE_1_1, 0.95, 1.05),
    (AspectRatio.HORIZONTAL_16_9, 1.7, 1.85),
]


def classify_aspect_ratio(width: int, height: int) -> AspectRatio:
    """Classify dimensions into a coarse aspect-ratio class.

    Ratios outside the named bands are PORTRAIT_CUSTOM (taller than wide) or
    LANDSCAPE_CUSTOM.
    """
    ratio = width / height
    for aspect, low, high in ASPECT_RATIO_BANDS:
        if low <= ratio <= high:
            return aspect
    return AspectRatio.PORTRAIT_CUSTOM if ratio < 1 else AspectRatio.LANDSCAPE_CUSTOM


def _parse_rational(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    if "/" in value:
        num, den = value.split("/", 1)
        try:
            num_f, den_f = float(num), float(den)
        except ValueError:
            return None
        return round(num_f / den_f, 3) if den_f else None
    try:
        return float(value)
    except ValueError:
        return None


def _rotation(stream: dict) -> int:
    rotate = stream.get("tags", {}).get("rotate")
    if rotate is not None:
        try:
            return int(rotate) % 360
        except ValueError:
            return 0
    for side_data in stream.get("side_data_list", []):
        if "rotation" in side_data:
            return int(side_data["rotation"]) % 360
    return 0


def parse_probe_output(data: dict) -> MediaInfo:
    """Build MediaInfo from ffprobe's JSON output.

    Raises:
        MediaProbeError: If there is no video stream or no usable duration
    """
    streams = data.get("streams", [])
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video_stream is None:
        raise MediaProbeError("No video stream found in file")

    fmt = data.get("format", {})
    duration = _parse_rational(video_stream.get("duration")) or _parse_rational(
        fmt.get("duration")
    )
    if not duration:
        raise MediaProbeError("Could not determine video duration")

    width = int(video_stream.get("width") or 0)
    height = int(video_stream.get("height") or 0)
    if width <= 0 or height <= 0:
        raise MediaProbeError("Could not determine video dimensions")

    # Phone recordings are often stored landscape with a rotation flag
    if _rotation(video_stream) in (90, 270):
        width, height = height, width

    bitrate = fmt.get("bit_rate") or video_stream.get("bit_rate")

    return MediaInfo(
        duration=float(duration),
        width=width,
        height=height,
        bitrate=int(bitrate) if bitrate else None,
        fps=_parse_rational(video_stream.get("avg_frame_rate"))
        or _parse_rational(video_stream.get("r_frame_rate")),
        codec=video_stream.get("codec_name"),
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
    )


@contextmanager
def temporary_media_file(content: bytes, suffix: str = ".mp4") -> Iterator[str]:
    """Write a buffer to a temporary file for tools that need a seekable input."""
    os.makedirs(settings.ENCODING_TEMP_DIR, exist_ok=True)
    fd, path = tempfile.mkstemp(suffix=suffix, dir=settings.ENCODING_TEMP_DIR)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        yield path
    finally:
        if os.path.exists(path):
            os.unlink(path)


async def run_process(
    cmd: list[str], timeout: float
) -> tuple[int, bytes, bytes]:
    """Run an external process, killing it if it outlives ``timeout``.

    Raises:
        FileNotFoundError: If the binary is not installed
        asyncio.TimeoutError: If the timeout expires
    """
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    return process.returncode, stdout, stderr


class MediaTools:
    """Async wrapper around the ffprobe and ffmpeg binaries."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH
        self.timeout = timeout or settings.FFMPEG_TIMEOUT_SECONDS

    async def probe(self, input_path: str) -> MediaInfo:
        """Probe a media file.

        Raises:
            MediaProbeError: Malformed file, timeout or missing prober
        """
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            input_path,
        ]
        try:
            returncode, stdout, stderr = await run_process(cmd, timeout=60)
        except FileNotFoundError:
            raise MediaProbeError("Media prober is not available")
        except asyncio.TimeoutError:
            raise MediaProbeError("Timed out reading video metadata")

        if returncode != 0:
            detail = stderr.decode(errors="replace").strip()[:200]
            raise MediaProbeError(f"Could not read video file: {detail or 'invalid media'}")

        try:
            data = json.loads(stdout)
        except json.JSONDecodeError:
            raise MediaProbeError("Could not read video file: unreadable probe output")
        return parse_probe_output(data)

    async def probe_bytes(self, content: bytes, suffix: str = ".mp4") -> MediaInfo:
        with temporary_media_file(content, suffix) as path:
            return await self.probe(path)

    async def extract_frame(
        self, input_path: str, offset_seconds: float, timeout: Optional[float] = None
    ) -> bytes:
        """Extract one JPEG frame at ``offset_seconds``.

        Raises:
            RuntimeError: If ffmpeg fails or produces no image
        """
        cmd = [
            self.ffmpeg_path,
            "-v", "error",
            "-ss", f"{max(0.0, offset_seconds):.3f}",
            "-i", input_path,
            "-frames:v", "1",
            "-f", "image2pipe",
            "-vcodec", "mjpeg",
            "-q:v", "2",
            "pipe:1",
        ]
        returncode, stdout, stderr = await run_process(cmd, timeout or self.timeout)
        if returncode != 0 or not stdout:
            raise RuntimeError(
                f"Frame extraction failed: {stderr.decode(errors='replace')[:200]}"
            )
        return stdout

    async def sample_frames(
        self, input_path: str, duration: float, count: int
    ) -> list[bytes]:
        """Extract ``count`` frames evenly spaced across the video."""
        frames = []
        for i in range(count):
            offset = duration * (i + 1) / (count + 1)
            frames.append(await self.extract_frame(input_path, offset))
        return frames

    async def extract_audio(self, input_path: str) -> Optional[bytes]:
        """Extract the audio track as 16 kHz mono WAV, or None if there is none."""
        cmd = [
            self.ffmpeg_path,
            "-v", "error",
            "-i", input_path,
            "-vn",
            "-ac", "1",
            "-ar", "16000",
            "-f", "wav",
            "pipe:1",
        ]
        returncode, stdout, stderr = await run_process(cmd, self.timeout)
        if returncode != 0:
            message = stderr.decode(errors="replace")
            if "does not contain any stream" in message or "matches no streams" in message:
                return None
            raise RuntimeError(f"Audio extraction failed: {message[:200]}")
        return stdout or None
