"""Transcoding module: job fan-out, ffmpeg workers and HLS packaging."""
