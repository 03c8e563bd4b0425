"""
Murmullo - hotkey voice dictation into whatever app has focus.

This package provides:
- Microphone capture with a single active recording session
- Audio container validation and ffmpeg-based repair
- Cloud transcription with retry/backoff and a numbered-list reformatter
- Best-effort grammar correction that preserves technical terms
- Clipboard-based paste that always restores the user's clipboard

Main entry point: python -m murmullo
"""

__version__ = "1.0.0"
