"""HLS packaging.

Each HLS job renders one variant: a VOD playlist plus its MPEG-TS segments.
The master playlist is never stored; ``build_master_playlist`` renders it
from whichever variants have completed when it is requested.
"""

import glob
import os
from dataclasses import dataclass
from typing import Iterable

from earntrack_media.core.exceptions import TranscodeError
from earntrack_media.modules.transcoding.ffmpeg import FFmpegTranscoder, scale_filter
from earntrack_media.modules.transcoding.models import RESOLUTION_PROFILES, Resolution
from earntrack_media.modules.video.keys import variant_playlist_name

HLS_PLAYLIST_CONTENT_TYPE = "application/x-mpegURL"
HLS_SEGMENT_CONTENT_TYPE = "video/MP2T"


@dataclass
class HLSOutput:
    """Files of one packaged variant."""
    playlist_path: str
    segment_paths: list[str]

    @property
    def files(self) -> list[str]:
        return [self.playlist_path, *self.segment_paths]

    @property
    def total_size(self) -> int:
        return sum(os.path.getsize(path) for path in self.files)


@dataclass(frozen=True)
class HLSVariant:
    """One entry of a master playlist."""
    resolution: Resolution
    uri: str

    @property
    def bandwidth(self) -> int:
        return RESOLUTION_PROFILES[self.resolution].bandwidth

    @property
    def dimensions(self) -> str:
        profile = RESOLUTION_PROFILES[self.resolution]
        return f"{profile.width}x{profile.height}"


def segment_pattern(resolution: Resolution) -> str:
    return f"{resolution.value}_%03d.ts"


class HLSPackager:
    """Renders single-variant HLS output with ffmpeg."""

    def __init__(self, transcoder: FFmpegTranscoder, segment_duration: int = 10):
        self.transcoder = transcoder
        self.segment_duration = segment_duration

    def bitrate_kbps(self, resolution: Resolution) -> int:
        return RESOLUTION_PROFILES[resolution].bitrate_kbps

    def build_command(self, input_path: str, output_dir: str, resolution: Resolution) -> list[str]:
        profile = RESOLUTION_PROFILES[resolution]
        return [
            self.transcoder.ffmpeg_path,
            "-y",
            "-i", input_path,
            "-c:v", "libx264",
            "-preset", "medium",
            "-b:v", f"{profile.bitrate_kbps}k",
            "-maxrate", f"{int(profile.bitrate_kbps * 1.5)}k",
            "-bufsize", f"{profile.bitrate_kbps * 2}k",
            "-vf", scale_filter(profile),
            "-c:a", "aac",
            "-b:a", "128k",
            "-f", "hls",
            "-hls_time", str(self.segment_duration),
            "-hls_list_size", "0",
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", os.path.join(output_dir, segment_pattern(resolution)),
            os.path.join(output_dir, variant_playlist_name(resolution)),
        ]

    def package(self, input_path: str, output_dir: str, resolution: Resolution) -> HLSOutput:
        """Package ``input_path`` as one HLS variant inside ``output_dir``.

        Raises:
            TranscodeError: If ffmpeg fails or writes no playlist
        """
        os.makedirs(output_dir, exist_ok=True)
        self.transcoder.run(self.build_command(input_path, output_dir, resolution))

        playlist_path = os.path.join(output_dir, variant_playlist_name(resolution))
        if not os.path.exists(playlist_path):
            raise TranscodeError(f"HLS playlist missing for {resolution.value}")

        segments = sorted(glob.glob(os.path.join(output_dir, f"{resolution.value}_*.ts")))
        return HLSOutput(playlist_path=playlist_path, segment_paths=segments)


def build_master_playlist(variants: Iterable[HLSVariant]) -> str:
    """Render an HLS master playlist, lowest bandwidth first."""
    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
    for variant in sorted(variants, key=lambda v: v.bandwidth):
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={variant.bandwidth},RESOLUTION={variant.dimensions}"
        )
        lines.append(variant.uri)
    return "\n".join(lines) + "\n"
