import numpy as np
from typing import Union
import logging


class ElementWise:
    """Base class for channel-merging functions.

    ``forward`` reduces axis 0 of a channel stack shaped ``(n, ...)``;
    ``backward`` returns the derivative of the merged value with respect to
    each of the n channels, with the same shape as the stack.
    """

    name = "ElementWise"

    def forward(self, stack: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def backward(self, stack: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class MaxOut(ElementWise):
    """Maximum across channels; the gradient goes to the first maximal channel."""

    name = "MaxOut"

    def forward(self, stack: np.ndarray) -> np.ndarray:
        return stack.max(axis=0)

    def backward(self, stack: np.ndarray) -> np.ndarray:
        first_max = stack.argmax(axis=0)
        mask = np.zeros_like(stack, dtype=float)
        np.put_along_axis(mask, first_max[np.newaxis], 1.0, axis=0)
        return mask


class Average(ElementWise):
    """Mean across channels; uniform 1/n gradient."""

    name = "Average"

    def forward(self, stack: np.ndarray) -> np.ndarray:
        return stack.mean(axis=0)

    def backward(self, stack: np.ndarray) -> np.ndarray:
        return np.full(stack.shape, 1.0 / stack.shape[0])


ELEMENT_WISE_FUNCTIONS = {
    'maxout': MaxOut,
    'max': MaxOut,
    'average': Average,
    'avg': Average,
}


def get_element_wise(element_wise: Union[str, ElementWise] = 'maxout') -> ElementWise:
    """Factory function to get a channel-merging function by name.

    Raises:
        ValueError: If the name is not recognized.
    """
    if isinstance(element_wise, ElementWise):
        return element_wise
    name_lower = str(element_wise).lower()
    if name_lower not in ELEMENT_WISE_FUNCTIONS:
        raise ValueError(
            f"Unknown element-wise function '{element_wise}'. "
            f"Available functions: {list(ELEMENT_WISE_FUNCTIONS.keys())}"
        )
    logging.debug(f"Resolved element-wise function '{element_wise}'")
    return ELEMENT_WISE_FUNCTIONS[name_lower]()
