"""Models package."""

from .video_analysis import VideoAnalysis
