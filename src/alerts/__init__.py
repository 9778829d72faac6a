"""
Alert sinks: audible cue playback.
"""

from .audio import AudioClip, AudioPlayer, load_wav, ring_tone

__all__ = ["AudioClip", "AudioPlayer", "load_wav", "ring_tone"]
