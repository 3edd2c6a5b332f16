"""
Parley - live meeting transcription with speaker identification.
"""

__version__ = "0.1.0"
