import numpy as np
from typing import Union
import logging


class Pooling:
    """Base class for pooling functions.

    A pooling function reduces each window of a stack shaped ``(..., P, P)``
    to a single value. ``backward`` returns, for every window element, the
    derivative of that window's output with respect to it.
    """

    name = "Pooling"

    def forward(self, windows: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def backward(self, windows: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class Max(Pooling):
    """Max pooling.

    forward: max over the window
    backward: 1 at the first maximum in row-major scan order, 0 elsewhere
    """

    name = "Max"

    def forward(self, windows: np.ndarray) -> np.ndarray:
        return windows.max(axis=(-2, -1))

    def backward(self, windows: np.ndarray) -> np.ndarray:
        flat = windows.reshape(windows.shape[:-2] + (-1,))
        # argmax returns the first occurrence, so ties go to the earliest element
        first_max = flat.argmax(axis=-1)
        mask = np.zeros_like(flat, dtype=float)
        np.put_along_axis(mask, first_max[..., np.newaxis], 1.0, axis=-1)
        return mask.reshape(windows.shape)


class Average(Pooling):
    """Average pooling.

    forward: mean over the window
    backward: 1/N for every element of an N-element window
    """

    name = "Average"

    def forward(self, windows: np.ndarray) -> np.ndarray:
        return windows.mean(axis=(-2, -1))

    def backward(self, windows: np.ndarray) -> np.ndarray:
        window_size = windows.shape[-2] * windows.shape[-1]
        return np.full(windows.shape, 1.0 / window_size)


POOLING_FUNCTIONS = {
    'max': Max,
    'average': Average,
    'avg': Average,
}


def get_pooling(pooling: Union[str, Pooling] = 'max') -> Pooling:
    """Factory function to get a pooling function by name.

    Raises:
        ValueError: If the pooling function name is not recognized.
    """
    if isinstance(pooling, Pooling):
        return pooling
    name_lower = str(pooling).lower()
    if name_lower not in POOLING_FUNCTIONS:
        raise ValueError(
            f"Unknown pooling function '{pooling}'. "
            f"Available functions: {list(POOLING_FUNCTIONS.keys())}"
        )
    logging.debug(f"Resolved pooling '{pooling}'")
    return POOLING_FUNCTIONS[name_lower]()
