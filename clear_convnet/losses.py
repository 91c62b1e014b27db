import numpy as np
from typing import Dict, Type, Union
import logging

# Clip range for log arguments
EPSILON = 1e-15


class Loss:
    """Base class for loss functions.

    ``forward`` returns the per-element error and ``backward`` the per-element
    gradient with respect to the network output. The network sums the
    per-element errors into a scalar.
    """

    name = "Loss"

    def forward(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def backward(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __call__(self, outputs: np.ndarray, targets: np.ndarray) -> float:
        """Total error over all elements."""
        return float(np.sum(self.forward(outputs, targets)))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class MSE(Loss):
    """Squared error.

    Loss     = (y - t)^2 / 2
    Gradient = y - t
    """

    name = "MSE"

    def forward(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        return 0.5 * (outputs - targets) ** 2

    def backward(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        return outputs - targets


class MultiCrossEntropy(Loss):
    """Multi-class cross-entropy, paired with a softmax output.

    Loss     = -t * log(y), and 0 where t == 0 or y == t
    Gradient = y - t

    The gradient is the derivative with respect to the softmax input, not the
    softmax output. See ``SoftmaxLayer`` for how the pair is meant to be used.
    """

    name = "MultiClassCrossEntropy"

    def forward(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        clipped = np.clip(outputs, EPSILON, 1.0 - EPSILON)
        error = -targets * np.log(clipped)
        return np.where((targets == 0) | (outputs == targets), 0.0, error)

    def backward(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        return outputs - targets


class BinaryCrossEntropy(Loss):
    """Binary cross-entropy, paired with a sigmoid output.

    Loss     = -(t * log(y) + (1 - t) * log(1 - y)), and 0 where y == t
    Gradient = y - t
    """

    name = "BinaryCrossEntropy"

    def forward(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        clipped = np.clip(outputs, EPSILON, 1.0 - EPSILON)
        error = -(targets * np.log(clipped) + (1.0 - targets) * np.log(1.0 - clipped))
        return np.where(outputs == targets, 0.0, error)

    def backward(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        return outputs - targets


# Dictionary mapping loss names to loss classes
LOSS_FUNCTIONS: Dict[str, Type[Loss]] = {
    "mse": MSE,
    "cross_entropy": MultiCrossEntropy,
    "multi_cross_entropy": MultiCrossEntropy,
    "binary_cross_entropy": BinaryCrossEntropy,
}


def get_loss(loss: Union[str, Loss] = "mse") -> Loss:
    """Factory function to get a loss function instance by name.

    Args:
        loss: Loss name (case-insensitive) or a Loss instance.

    Returns:
        An instance of the requested Loss class.

    Raises:
        ValueError: If the loss name is not recognized.
    """
    if isinstance(loss, Loss):
        return loss
    name_lower = str(loss).lower()
    if name_lower not in LOSS_FUNCTIONS:
        raise ValueError(
            f"Unsupported loss '{loss}'. "
            f"Valid options: {list(LOSS_FUNCTIONS.keys())}"
        )
    logging.debug(f"Resolved loss '{loss}' -> {LOSS_FUNCTIONS[name_lower].__name__}")
    return LOSS_FUNCTIONS[name_lower]()
