"""
VoiceAssist Interpreter

Coordinates a live, bidirectional medical interpretation session between two
speakers mediated by a realtime AI translation backend.
"""

__version__ = "0.1.0"
