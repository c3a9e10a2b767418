"""
Linear-interpolation resampler (pure).

No anti-aliasing filter. For output index i:

    pos  = i * in_rate / out_rate
    idx  = floor(pos), frac = pos - idx
    s0   = x[idx]       (0 past the end)
    s1   = x[idx + 1]   (s0 past the end)
    y[i] = s0 + (s1 - s0) * frac

Output length is max(1, floor(len(x) * out_rate / in_rate)).
"""

from __future__ import annotations

import math

import numpy as np


def output_length(num_samples: int, in_rate: int, out_rate: int) -> int:
    """Number of samples resample_linear() produces for a non-empty input."""
    ratio = in_rate / out_rate
    return max(1, int(math.floor(num_samples / ratio)))


def resample_linear(samples: np.ndarray, in_rate: int, out_rate: int) -> np.ndarray:
    """
    Resample mono float audio from in_rate to out_rate.

    Equal rates return the input object unchanged. Empty input returns an
    empty float32 array. Invalid rates raise ValueError.
    """
    if in_rate <= 0 or out_rate <= 0:
        raise ValueError(f"sample rates must be > 0 (in={in_rate}, out={out_rate})")

    if in_rate == out_rate:
        return samples

    x = np.asarray(samples, dtype=np.float64).reshape(-1)
    n = x.shape[0]
    if n == 0:
        return np.zeros(0, dtype=np.float32)

    ratio = in_rate / out_rate
    out_len = output_length(n, in_rate, out_rate)

    pos = np.arange(out_len, dtype=np.float64) * ratio
    idx = np.floor(pos).astype(np.int64)
    frac = pos - idx

    s0 = np.where(idx < n, x[np.minimum(idx, n - 1)], 0.0)
    s1 = np.where(idx + 1 < n, x[np.minimum(idx + 1, n - 1)], s0)

    return (s0 + (s1 - s0) * frac).astype(np.float32)
