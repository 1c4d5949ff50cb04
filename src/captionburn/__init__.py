"""
Caption burn-in pipeline - burn subtitles into uploaded videos.

A small service for:
- Validating SRT subtitle tracks
- Burning captions into video with a chosen font
- Optionally overlaying a stock B-roll clip picked from the transcript
- Running ffmpeg once per request and cleaning up every temporary file
"""

__version__ = "0.1.0"
