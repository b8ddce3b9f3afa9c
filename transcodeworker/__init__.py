"""Video transcoding worker driven by Redis/Valkey streams, ffmpeg and S3-compatible storage."""

__version__ = "0.1.0"