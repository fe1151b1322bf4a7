"""Asynchronous call-transcription pipeline."""

__version__ = "0.3.0"
