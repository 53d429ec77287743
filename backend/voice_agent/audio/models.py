"""Audio data models and structures."""
from dataclasses import dataclass
import numpy as np


@dataclass
class AudioFrame:
    """Represents a single block of captured or received audio."""
    pcm_data: np.ndarray  # int16 PCM samples
    sample_rate: int
    timestamp: float  # Unix timestamp when frame was captured
    source: str  # "input" (microphone) or "output" (remote assistant)

    def __post_init__(self):
        """Validate frame data."""
        if self.pcm_data.dtype != np.int16:
            raise ValueError(f"Expected int16 PCM, got {self.pcm_data.dtype}")
        if len(self.pcm_data.shape) != 1:
            raise ValueError(f"Expected mono (1D array), got shape {self.pcm_data.shape}")
