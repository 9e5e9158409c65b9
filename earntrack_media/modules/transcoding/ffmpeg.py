"""FFmpeg transcoding utilities.

Wraps the ffmpeg/ffprobe binaries behind plain blocking calls that either
return a result or raise ``TranscodeError``. Workers run these in a thread.
"""

import json
import logging
import math
import os
import subprocess
from dataclasses import dataclass
from typing import Optional

from earntrack_media.core.exceptions import TranscodeError
from earntrack_media.modules.transcoding.models import (
    RESOLUTION_PROFILES,
    Resolution,
    ResolutionProfile,
    TranscodeFormat,
)

logger = logging.getLogger(__name__)

# Longest stderr tail kept on a failed invocation
STDERR_TAIL = 4000


@dataclass
class MediaInfo:
    """Probed attributes of a media file."""
    duration: Optional[float]
    codec: Optional[str]
    width: Optional[int]
    height: Optional[int]
    bitrate: Optional[int]  # bps
    format_name: Optional[str] = None

    @property
    def resolution(self) -> Optional[str]:
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return None


@dataclass
class FFmpegConfig:
    """Configuration for one progressive transcode."""
    input_path: str
    output_path: str
    format: TranscodeFormat
    resolution: Resolution
    preset: str = "medium"
    audio_bitrate: str = "128k"

    @property
    def profile(self) -> ResolutionProfile:
        return RESOLUTION_PROFILES[self.resolution]


@dataclass
class TranscodeOutput:
    """Result of a transcode."""
    success: bool
    output_path: str
    file_size: int = 0
    bitrate: int = 0  # kbps
    error_message: Optional[str] = None


def scale_filter(profile: ResolutionProfile) -> str:
    """Fit inside the tier's frame keeping aspect ratio, then pad to exact size."""
    w, h = profile.width, profile.height
    return (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2"
    )


def _number(value, cast):
    """Parse a numeric ffprobe field; ``N/A`` and other junk become None."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return cast(number)


def parse_probe_output(data: dict) -> MediaInfo:
    """Build ``MediaInfo`` from ``ffprobe -print_format json`` output.

    Raises:
        TranscodeError: If the file has no video stream
    """
    video_stream = next(
        (s for s in data.get("streams", []) if s.get("codec_type") == "video"),
        None,
    )
    if video_stream is None:
        raise TranscodeError("No video stream found")

    fmt = data.get("format", {})
    duration = _number(fmt.get("duration"), float)
    if duration is None:
        duration = _number(video_stream.get("duration"), float)
    bitrate = _number(fmt.get("bit_rate"), int)
    if bitrate is None:
        bitrate = _number(video_stream.get("bit_rate"), int)

    return MediaInfo(
        duration=duration,
        codec=video_stream.get("codec_name"),
        width=video_stream.get("width"),
        height=video_stream.get("height"),
        bitrate=bitrate,
        format_name=fmt.get("format_name"),
    )


class FFmpegTranscoder:
    """ffmpeg/ffprobe adapter."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        timeout: Optional[float] = None,
    ):
        """Initialize transcoder.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
            timeout: Seconds before an invocation is killed; None waits forever
        """
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def run(self, cmd: list[str]) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise TranscodeError(f"Executable not found: {cmd[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise TranscodeError(f"{os.path.basename(cmd[0])} timed out after {self.timeout}s") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise TranscodeError(
                f"{os.path.basename(cmd[0])} exited with {result.returncode}: {stderr[-STDERR_TAIL:]}"
            )
        return result

    def probe(self, input_path: str) -> MediaInfo:
        """Probe duration, codec, resolution and bitrate."""
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            input_path,
        ]
        result = self.run(cmd)
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise TranscodeError(f"Unreadable ffprobe output: {e}") from e
        return parse_probe_output(data)

    def get_duration(self, input_path: str) -> float:
        """Duration in seconds, 0.0 when it cannot be determined."""
        try:
            return self.probe(input_path).duration or 0.0
        except (TranscodeError, ValueError):
            return 0.0

    def build_thumbnail_command(
        self,
        input_path: str,
        output_path: str,
        timestamp: float,
        size: str = "1280x720",
    ) -> list[str]:
        width, height = (int(v) for v in size.lower().split("x"))
        return [
            self.ffmpeg_path,
            "-y",
            "-ss", f"{max(timestamp, 0.0):.3f}",
            "-i", input_path,
            "-frames:v", "1",
            "-vf", scale_filter(ResolutionProfile(width, height, 0)),
            "-q:v", "2",
            output_path,
        ]

    def extract_thumbnail(
        self,
        input_path: str,
        output_path: str,
        timestamp: float,
        size: str = "1280x720",
    ) -> str:
        """Grab one frame as JPEG. Returns the output path."""
        self.run(self.build_thumbnail_command(input_path, output_path, timestamp, size))
        if not os.path.exists(output_path):
            raise TranscodeError("Thumbnail was not written")
        return output_path

    def build_transcode_command(self, config: FFmpegConfig) -> list[str]:
        """Build the ffmpeg command for a progressive (single file) rendition.

        Args:
            config: Transcoding configuration

        Returns:
            FFmpeg command as list of arguments
        """
        profile = config.profile
        bitrate = f"{profile.bitrate_kbps}k"

        cmd = [self.ffmpeg_path, "-y", "-i", config.input_path]

        if config.format == TranscodeFormat.MP4:
            cmd += [
                "-c:v", "libx264",
                "-preset", config.preset,
                "-b:v", bitrate,
                "-maxrate", f"{int(profile.bitrate_kbps * 1.5)}k",
                "-bufsize", f"{profile.bitrate_kbps * 2}k",
                "-vf", scale_filter(profile),
                "-c:a", "aac",
                "-b:a", config.audio_bitrate,
                "-movflags", "+faststart",
                "-f", "mp4",
            ]
        elif config.format == TranscodeFormat.WEBM:
            # Constrained quality: crf with the tier bitrate as ceiling
            cmd += [
                "-c:v", "libvpx-vp9",
                "-crf", "30",
                "-b:v", bitrate,
                "-vf", scale_filter(profile),
                "-c:a", "libopus",
                "-b:a", config.audio_bitrate,
                "-f", "webm",
            ]
        else:
            raise ValueError(f"{config.format.value} is not a progressive format")

        cmd.append(config.output_path)
        return cmd

    def transcode(self, config: FFmpegConfig) -> TranscodeOutput:
        """Transcode to the configured format and resolution."""
        try:
            self.run(self.build_transcode_command(config))
        except TranscodeError as e:
            return TranscodeOutput(
                success=False,
                output_path=config.output_path,
                error_message=str(e),
            )

        if not os.path.exists(config.output_path):
            return TranscodeOutput(
                success=False,
                output_path=config.output_path,
                error_message="ffmpeg produced no output file",
            )

        return TranscodeOutput(
            success=True,
            output_path=config.output_path,
            file_size=os.path.getsize(config.output_path),
            bitrate=config.profile.bitrate_kbps,
        )
