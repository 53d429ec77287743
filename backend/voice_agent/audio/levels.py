"""Audio level metering from frequency-domain magnitudes.

Levels are computed the way a browser analyser node reports them: a
windowed FFT over the most recent block, magnitudes converted to
decibels and mapped onto byte values between a floor and a ceiling,
then averaged. The result is a level in [0, 1] shared by the level
meters and the voice activity interrupter.
"""
from typing import Optional
import numpy as np
from voice_agent.audio.models import AudioFrame

FFT_SIZE = 256
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0
SMOOTHING_TIME_CONSTANT = 0.8


def _magnitudes(pcm_data: np.ndarray, fft_size: int) -> np.ndarray:
    """Normalized FFT magnitudes of the last ``fft_size`` samples."""
    samples = pcm_data[-fft_size:].astype(np.float32) / 32768.0
    if samples.size < fft_size:
        samples = np.pad(samples, (fft_size - samples.size, 0))

    windowed = samples * np.blackman(fft_size)
    spectrum = np.fft.rfft(windowed)[: fft_size // 2]
    return np.abs(spectrum) / fft_size


def magnitudes_to_bytes(magnitudes: np.ndarray) -> np.ndarray:
    """
    Map linear magnitudes onto 0..255 over [MIN_DECIBELS, MAX_DECIBELS].

    Args:
        magnitudes: Linear magnitude per frequency bin

    Returns:
        uint8 array, one value per bin
    """
    decibels = 20.0 * np.log10(np.maximum(magnitudes, 1e-12))
    scaled = 255.0 / (MAX_DECIBELS - MIN_DECIBELS) * (decibels - MIN_DECIBELS)
    return np.clip(np.floor(scaled), 0, 255).astype(np.uint8)


def level_from_bytes(byte_data: np.ndarray) -> float:
    """Average byte magnitude scaled to [0, 1]."""
    if byte_data.size == 0:
        return 0.0
    return float(np.mean(byte_data)) / 255.0


def audio_level(frame: AudioFrame, fft_size: int = FFT_SIZE) -> float:
    """
    Instantaneous level of a frame (no temporal smoothing).

    Args:
        frame: Audio frame to meter

    Returns:
        Level in [0, 1]; 0.0 for empty frames
    """
    if len(frame.pcm_data) == 0:
        return 0.0
    return level_from_bytes(magnitudes_to_bytes(_magnitudes(frame.pcm_data, fft_size)))


class LevelAnalyser:
    """Streaming level meter with exponential smoothing across frames."""

    def __init__(self, fft_size: int = FFT_SIZE, smoothing: float = SMOOTHING_TIME_CONSTANT):
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError(f"smoothing must be in [0, 1), got {smoothing}")
        self.fft_size = fft_size
        self.smoothing = smoothing
        self._smoothed: Optional[np.ndarray] = None
        self.level = 0.0

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def push(self, frame: AudioFrame) -> float:
        """Feed one frame and return the updated level."""
        if len(frame.pcm_data) == 0:
            return self.level

        current = _magnitudes(frame.pcm_data, self.fft_size)
        if self._smoothed is None:
            self._smoothed = (1.0 - self.smoothing) * current
        else:
            self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * current

        self.level = level_from_bytes(magnitudes_to_bytes(self._smoothed))
        return self.level

    def byte_frequency_data(self) -> np.ndarray:
        """Current per-bin byte magnitudes (all zero before any frame)."""
        if self._smoothed is None:
            return np.zeros(self.frequency_bin_count, dtype=np.uint8)
        return magnitudes_to_bytes(self._smoothed)

    def reset(self) -> None:
        self._smoothed = None
        self.level = 0.0
