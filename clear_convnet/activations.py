import numpy as np
from typing import Union
import logging


class Activation:
    """Base class for all activation functions.

    Activations are applied element-wise to a layer's pre-activation values.
    ``name`` is reported as the layer's generic type.
    """

    name = "Activation"

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Compute the activation function value.

        Args:
            x: Pre-activation values (numpy array).

        Returns:
            Activated output with the same shape as x.
        """
        raise NotImplementedError

    def backward(self, x: np.ndarray) -> np.ndarray:
        """Compute the derivative of the activation with respect to its input.

        Note: 'x' is the *pre-activation* value, not the activated output.

        Args:
            x: Pre-activation values where the derivative is evaluated.

        Returns:
            Derivative evaluated at x, same shape as x.
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class Identity(Activation):
    """Identity activation.

    Mathematical form:
        forward: f(x) = x
        backward: f'(x) = 1
    """

    name = "Identity"

    def forward(self, x: np.ndarray) -> np.ndarray:
        return np.array(x, dtype=float, copy=True)

    def backward(self, x: np.ndarray) -> np.ndarray:
        return np.ones_like(x, dtype=float)


class Sigmoid(Activation):
    """Sigmoid activation function.

    Mathematical form:
        forward: f(x) = 1 / (1 + e^-x)
        backward: f'(x) = f(x) * (1 - f(x))
    """

    name = "Sigmoid"

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Compute sigmoid activation with clipping for numerical stability."""
        # exp(-x) overflows float64 for x < -709
        clipped_x = np.clip(x, -500, 500)
        return 1.0 / (1.0 + np.exp(-clipped_x))

    def backward(self, x: np.ndarray) -> np.ndarray:
        sig = self.forward(x)
        return sig * (1.0 - sig)


class Tanh(Activation):
    """Hyperbolic tangent activation function.

    Mathematical form:
        forward: f(x) = tanh(x)
        backward: f'(x) = 1 - tanh^2(x)
    """

    name = "Tanh"

    def forward(self, x: np.ndarray) -> np.ndarray:
        return np.tanh(x)

    def backward(self, x: np.ndarray) -> np.ndarray:
        return 1.0 - np.tanh(x) ** 2


class ReLU(Activation):
    """Rectified Linear Unit activation function.

    Mathematical form:
        forward: f(x) = max(0, x)
        backward: f'(x) = 1 if x > 0 else 0
    """

    name = "ReLU"

    def forward(self, x: np.ndarray) -> np.ndarray:
        return np.maximum(0.0, x)

    def backward(self, x: np.ndarray) -> np.ndarray:
        return np.where(x > 0, 1.0, 0.0)


# Dictionary mapping activation function names to their classes
ACTIVATION_FUNCTIONS = {
    'identity': Identity,
    'linear': Identity,
    'sigmoid': Sigmoid,
    'tanh': Tanh,
    'relu': ReLU,
}


def get_activation(activation: Union[str, Activation, None] = 'identity') -> Activation:
    """Resolves an activation function by name or passes an instance through.

    Args:
        activation: Name of the activation function (case-insensitive), an
                    Activation instance, or None for Identity.

    Returns:
        An instance of the requested Activation class.

    Raises:
        ValueError: If the activation function name is not recognized.
    """
    if activation is None:
        return Identity()
    if isinstance(activation, Activation):
        return activation
    name_lower = str(activation).lower()
    if name_lower not in ACTIVATION_FUNCTIONS:
        raise ValueError(
            f"Unknown activation function '{activation}'. "
            f"Available functions: {list(ACTIVATION_FUNCTIONS.keys())}"
        )
    logging.debug(f"Resolved activation '{activation}' -> {ACTIVATION_FUNCTIONS[name_lower].__name__}")
    return ACTIVATION_FUNCTIONS[name_lower]()
