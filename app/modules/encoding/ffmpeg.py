"""FFmpeg HLS encoding.

Encodes a source video into HLS renditions ({name}/playlist.m3u8 with
6-second segments), a master manifest, and optionally a progressive MP4 fallback.
"""

import json
import os
import subprocess
from dataclasses import dataclass, field
from typing import Optional

from app.core.config import settings
from app.modules.encoding.interface import Rendition, RENDITIONS

MASTER_MANIFEST = "master.m3u8"
MP4_FALLBACK = "fallback_720p.mp4"
HLS_SEGMENT_SECONDS = 6


@dataclass
class RenditionOutput:
    """Result of encoding one rendition."""

    rendition: Rendition
    success: bool
    playlist_path: str
    skipped: bool = False
    error_message: Optional[str] = None


@dataclass
class EncodeResult:
    """Result of an encoding run."""

    success: bool
    output_dir: str
    renditions: list[RenditionOutput] = field(default_factory=list)
    master_manifest_path: Optional[str] = None
    mp4_path: Optional[str] = None
    error_message: Optional[str] = None


def scale_filter(rendition: Rendition) -> str:
    """Scale the short side to the rendition height, keeping aspect ratio.

    Works for portrait and landscape sources alike; -2 keeps the other side even.
    """
    short_side = rendition.height
    return (
        f"scale=w='if(gt(iw,ih),-2,{short_side})':"
        f"h='if(gt(iw,ih),{short_side},-2)'"
    )


def build_master_manifest(renditions: list[Rendition], portrait: bool = False) -> str:
    """Build an HLS master playlist, highest bandwidth first."""
    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
    for rendition in sorted(renditions, key=lambda r: r.bandwidth, reverse=True):
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={rendition.bandwidth},"
            f"RESOLUTION={rendition.resolution(portrait)}"
        )
        lines.append(f"{rendition.name}/playlist.m3u8")
    return "\n".join(lines) + "\n"


class FFmpegHLSEncoder:
    """FFmpeg-based HLS encoder run inside a worker process."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH
        self.timeout = timeout or settings.FFMPEG_TIMEOUT_SECONDS

    def get_video_info(self, input_path: str) -> dict:
        """Get video information using ffprobe."""
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            input_path,
        ]
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, check=True, timeout=60
            )
            return json.loads(result.stdout)
        except (subprocess.SubprocessError, json.JSONDecodeError) as e:
            return {"error": str(e)}

    def is_portrait(self, input_path: str) -> bool:
        info = self.get_video_info(input_path)
        for stream in info.get("streams", []):
            if stream.get("codec_type") == "video":
                width, height = stream.get("width", 0), stream.get("height", 0)
                rotate = str(stream.get("tags", {}).get("rotate", "0"))
                if rotate in ("90", "270", "-90"):
                    width, height = height, width
                return height > width
        return False

    def build_hls_command(
        self, input_path: str, output_dir: str, rendition: Rendition
    ) -> list[str]:
        """Build the FFmpeg command for one HLS rendition."""
        variant_dir = os.path.join(output_dir, rendition.name)
        return [
            self.ffmpeg_path,
            "-y",
            "-i", input_path,
            "-c:v", "libx264",
            "-preset", "fast",
            "-crf", "23",
            "-maxrate", f"{rendition.video_bitrate_kbps}k",
            "-bufsize", f"{rendition.video_bitrate_kbps * 2}k",
            "-vf", scale_filter(rendition),
            "-c:a", "aac",
            "-b:a", f"{rendition.audio_bitrate_kbps}k",
            "-ac", "2",
            "-f", "hls",
            "-hls_time", str(HLS_SEGMENT_SECONDS),
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", os.path.join(variant_dir, "seg_%03d.ts"),
            os.path.join(variant_dir, "playlist.m3u8"),
        ]

    def build_mp4_command(
        self, input_path: str, output_path: str, rendition: Rendition
    ) -> list[str]:
        """Build the FFmpeg command for a progressive MP4 fallback."""
        return [
            self.ffmpeg_path,
            "-y",
            "-i", input_path,
            "-c:v", "libx264",
            "-preset", "fast",
            "-crf", "23",
            "-maxrate", f"{rendition.video_bitrate_kbps}k",
            "-bufsize", f"{rendition.video_bitrate_kbps * 2}k",
            "-vf", scale_filter(rendition),
            "-c:a", "aac",
            "-b:a", f"{rendition.audio_bitrate_kbps}k",
            "-movflags", "+faststart",
            "-f", "mp4",
            output_path,
        ]

    def _run(self, cmd: list[str]) -> Optional[str]:
        """Run FFmpeg; return an error message or None on success."""
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            return f"FFmpeg timed out after {self.timeout}s"
        except FileNotFoundError:
            return "FFmpeg binary not found"
        if result.returncode != 0:
            return result.stderr[-500:] or f"FFmpeg exited with {result.returncode}"
        return None

    def encode_rendition(
        self, input_path: str, output_dir: str, rendition: Rendition
    ) -> RenditionOutput:
        playlist_path = os.path.join(output_dir, rendition.name, "playlist.m3u8")
        if os.path.exists(playlist_path):
            return RenditionOutput(rendition, True, playlist_path, skipped=True)

        os.makedirs(os.path.dirname(playlist_path), exist_ok=True)
        error = self._run(self.build_hls_command(input_path, output_dir, rendition))
        return RenditionOutput(rendition, error is None, playlist_path, error_message=error)

    def encode(
        self,
        input_path: str,
        output_dir: str,
        renditions: list[Rendition],
        include_mp4: bool = False,
        manifest_renditions: Optional[list[Rendition]] = None,
    ) -> EncodeResult:
        """Encode the given renditions and write the master manifest.

        Renditions whose playlist already exists in ``output_dir`` are kept
        as is. ``manifest_renditions`` lists every tier the master manifest
        should reference, including tiers encoded by an earlier phase.
        """
        os.makedirs(output_dir, exist_ok=True)
        portrait = self.is_portrait(input_path)

        outputs = [self.encode_rendition(input_path, output_dir, r) for r in renditions]
        failed = [o for o in outputs if not o.success]
        if failed:
            return EncodeResult(
                success=False,
                output_dir=output_dir,
                renditions=outputs,
                error_message=f"{failed[0].rendition.name}: {failed[0].error_message}",
            )

        master_path = os.path.join(output_dir, MASTER_MANIFEST)
        with open(master_path, "w") as f:
            f.write(build_master_manifest(manifest_renditions or renditions, portrait))

        mp4_path = None
        if include_mp4:
            mp4_path = os.path.join(output_dir, MP4_FALLBACK)
            error = self._run(self.build_mp4_command(input_path, mp4_path, RENDITIONS["720p"]))
            if error:
                # The HLS tier is playable; a missing MP4 fallback is not fatal
                mp4_path = None

        return EncodeResult(
            success=True,
            output_dir=output_dir,
            renditions=outputs,
            master_manifest_path=master_path,
            mp4_path=mp4_path,
        )
