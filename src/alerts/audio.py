"""
Audible alert playback.

Uses PyAudio when installed. Playback runs on a daemon thread so the caller
never waits on the audio device; failures are logged and dropped.
"""

from __future__ import annotations

import logging
import os
import threading
import wave
from dataclasses import dataclass
from typing import Optional

import numpy as np

from pipeline.errors import SideEffectFailure

RING_SAMPLE_RATE = 44100


@dataclass(frozen=True)
class AudioClip:
    """Raw PCM audio ready for playback."""
    data: bytes
    channels: int
    sample_width: int
    rate: int


def ring_tone(volume: float = 0.8, rate: int = RING_SAMPLE_RATE) -> AudioClip:
    """Generate a short two-tone door ring as 16-bit mono PCM."""
    pieces = []
    for freq, duration in ((880.0, 0.18), (0.0, 0.05), (660.0, 0.30)):
        t = np.arange(int(rate * duration)) / rate
        tone = np.sin(2 * np.pi * freq * t) if freq else np.zeros_like(t)
        # Short fade in/out to avoid clicks
        fade = min(len(t) // 10, int(rate * 0.01))
        if fade:
            ramp = np.linspace(0.0, 1.0, fade)
            tone[:fade] *= ramp
            tone[-fade:] *= ramp[::-1]
        pieces.append(tone)
    samples = np.concatenate(pieces) * max(0.0, min(volume, 1.0)) * 32767
    return AudioClip(
        data=samples.astype(np.int16).tobytes(),
        channels=1,
        sample_width=2,
        rate=rate,
    )


def load_wav(path: str, volume: float = 1.0) -> AudioClip:
    """Read a WAV file; 16-bit clips are scaled by ``volume``."""
    if not os.path.exists(path):
        raise SideEffectFailure(f"Sound file not found: {path}")
    try:
        with wave.open(path, "rb") as wf:
            channels = wf.getnchannels()
            sample_width = wf.getsampwidth()
            rate = wf.getframerate()
            data = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError) as e:
        raise SideEffectFailure(f"Unreadable sound file {path}: {e}") from e

    if sample_width == 2 and volume != 1.0:
        samples = np.frombuffer(data, dtype=np.int16).astype(np.float32) * volume
        data = np.clip(samples, -32768, 32767).astype(np.int16).tobytes()
    return AudioClip(data=data, channels=channels, sample_width=sample_width, rate=rate)


class AudioPlayer:
    """
    Fire-and-forget alert player.

    Args:
        sound_file: WAV file to play. None plays the built-in ring tone.
        volume: Gain applied to 16-bit audio (0-1).
    """

    def __init__(self, sound_file: Optional[str] = None, volume: float = 0.8):
        try:
            import pyaudio  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "PyAudio is not installed. Install with `pip install pyaudio` "
                "or set alerts.enabled to false."
            ) from e

        self._pyaudio = pyaudio
        self.sound_file = sound_file
        self.volume = volume
        self._clip: Optional[AudioClip] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.played_count = 0

    @property
    def is_playing(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def play(self) -> bool:
        """
        Start playback in the background.

        Returns False if a previous cue is still playing; the new one is
        dropped rather than queued.
        """
        with self._lock:
            if self.is_playing:
                logging.debug("Alert cue still playing, skipping")
                return False
            self._thread = threading.Thread(target=self._play_worker, name="alert-audio", daemon=True)
            self._thread.start()
            self.played_count += 1
        return True

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the current cue finishes (used on shutdown and in tools)."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _load_clip(self) -> AudioClip:
        if self._clip is None:
            if self.sound_file:
                self._clip = load_wav(self.sound_file, self.volume)
            else:
                self._clip = ring_tone(self.volume)
        return self._clip

    def _play_worker(self) -> None:
        try:
            self._play_blocking(self._load_clip())
        except SideEffectFailure as e:
            logging.error(f"Audio play failed: {e}")
        except Exception as e:
            logging.error(f"Audio play failed: {type(e).__name__}: {e}")

    def _play_blocking(self, clip: AudioClip) -> None:
        pa = self._pyaudio.PyAudio()
        try:
            stream = pa.open(
                format=pa.get_format_from_width(clip.sample_width),
                channels=clip.channels,
                rate=clip.rate,
                output=True,
            )
            try:
                stream.write(clip.data)
            finally:
                stream.stop_stream()
                stream.close()
        finally:
            pa.terminate()
