"""Ring doorbell to dashboard display stream bridge."""

from .ffmpeg_session import FfmpegStreamingSession

__version__ = "0.1.0"

__all__ = ["FfmpegStreamingSession", "__version__"]
