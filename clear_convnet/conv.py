import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from typing import Optional, Tuple, Union
import logging

from .activations import Activation, get_activation
from .elementwises import ElementWise, get_element_wise
from .layer import Layer, momentum_step
from .parallel import parallel_for
from .poolings import Pooling, get_pooling
from .tensor import ArrayLike, to_maps, to_vector


def strided_windows(maps: np.ndarray, window: int, stride: int) -> np.ndarray:
    """Read-only view of every window of a (depth, H, W) stack.

    Returns an array of shape (depth, out_h, out_w, window, window) where
    out = (H - window) // stride + 1.
    """
    return sliding_window_view(maps, (window, window), axis=(1, 2))[:, ::stride, ::stride]


def scatter_windows(window_grads: np.ndarray, height: int, width: int, stride: int) -> np.ndarray:
    """Adds per-window gradients back onto a (height, width) map.

    ``window_grads`` has shape (out_h, out_w, K, K). Overlapping windows
    accumulate. Loops over the K*K kernel offsets and adds a strided slice
    for each one.
    """
    out_h, out_w, k_h, k_w = window_grads.shape
    result = np.zeros((height, width))
    for u in range(k_h):
        u_max = u + stride * out_h
        for v in range(k_w):
            v_max = v + stride * out_w
            result[u:u_max:stride, v:v_max:stride] += window_grads[:, :, u, v]
    return result


class ConvolutionalLayer(Layer):
    """
    2-D convolution (cross-correlation) over a stack of feature maps.

    Kernels are stored as an (in_depth, out_depth, K, K) array; flattened,
    kernel (id, od) is the block at index id * out_depth + od. A binary
    connection table decides which input channels feed which output
    channels. Disconnected kernels are held at zero.

    Output size per axis: (in + 2 * padding - kernel_size) // stride + 1.
    """

    layer_type = "ConvolutionalLayer"

    def __init__(
        self,
        in_height: int,
        in_width: int,
        in_depth: int,
        kernel_size: int = 3,
        out_depth: int = 32,
        stride: int = 1,
        padding: int = 0,
        connection_table: Optional[ArrayLike] = None,
        name: str = "",
        kernels: Optional[ArrayLike] = None,
        biases: Optional[ArrayLike] = None,
        activation: Union[str, Activation, None] = 'identity',
    ):
        """
        Args:
            in_height: Input map height.
            in_width: Input map width.
            in_depth: Number of input maps.
            kernel_size: Side length K of the square kernels.
            out_depth: Number of output maps.
            stride: Step between windows.
            padding: Zero border added on every side of the input maps.
            connection_table: Binary in_depth x out_depth table, flat (index
                              id * out_depth + od) or 2-D. None or a wrong size
                              means every input feeds every output.
            name: Layer name.
            kernels: Optional flat initial kernels of length in_depth * out_depth * K * K.
                     Default is uniform on ±1/sqrt(in_depth * K * K).
            biases: Optional initial biases of length out_depth. Defaults to zeros.
            activation: Activation name or instance applied to every output pixel.
        """
        super().__init__(name)
        if kernel_size > in_height + 2 * padding or kernel_size > in_width + 2 * padding:
            raise ValueError(
                f"Layer '{name}': kernel size {kernel_size} exceeds the padded input "
                f"{in_height + 2 * padding}x{in_width + 2 * padding}"
            )
        self.in_height, self.in_width, self.in_depth = in_height, in_width, in_depth
        self.kernel_size = kernel_size
        self.out_depth = out_depth
        self.stride = stride
        self.padding = padding
        self.activation = get_activation(activation)

        self.out_height = (in_height + 2 * padding - kernel_size) // stride + 1
        self.out_width = (in_width + 2 * padding - kernel_size) // stride + 1
        self.input_size = in_height * in_width * in_depth
        self.output_size = self.out_height * self.out_width * out_depth

        self.connection_table = self._build_connection_table(connection_table)

        self.padded_inputs = np.zeros((in_depth, in_height + 2 * padding, in_width + 2 * padding))
        self.inputs = np.zeros(self.input_size)
        self.pre_activation = np.zeros((out_depth, self.out_height, self.out_width))

        kernel_shape = (in_depth, out_depth, kernel_size, kernel_size)
        self.kernels = np.zeros(kernel_shape)
        if kernels is not None and np.size(kernels) == self.kernels.size:
            self.set_weights(kernels)
        else:
            if kernels is not None:
                logging.warning(
                    f"Layer '{name}': ignoring initial kernels of length {np.size(kernels)}, "
                    f"expected {self.kernels.size}."
                )
            bound = 1.0 / np.sqrt(in_depth * kernel_size * kernel_size)
            self.generate_weights(-bound, bound)

        if biases is not None and np.size(biases) == out_depth:
            self.biases = np.asarray(biases, dtype=float).reshape(-1).copy()
        else:
            if biases is not None:
                logging.warning(
                    f"Layer '{name}': ignoring initial biases of length {np.size(biases)}, "
                    f"expected {out_depth}."
                )
            self.biases = np.zeros(out_depth)

        self.gradients = np.zeros_like(self.kernels)
        self.bias_gradients = np.zeros_like(self.biases)
        self.prev_update = np.zeros_like(self.kernels)
        self.prev_bias_update = np.zeros_like(self.biases)

        logging.debug(f"ConvolutionalLayer '{name}' created: {self.describe()}")

    def _build_connection_table(self, table: Optional[ArrayLike]) -> np.ndarray:
        full = np.ones((self.in_depth, self.out_depth), dtype=bool)
        if table is None:
            return full
        table = np.asarray(table)
        if table.size != self.in_depth * self.out_depth:
            logging.warning(
                f"Layer '{self.name}': connection table has {table.size} entries, expected "
                f"{self.in_depth * self.out_depth}; using full connectivity."
            )
            return full
        return table.reshape(self.in_depth, self.out_depth) != 0

    @property
    def generic_type(self) -> str:
        return self.activation.name

    def set_inputs(self, inputs: ArrayLike) -> None:
        """Stores the inputs and copies them into the zero-padded buffer."""
        super().set_inputs(inputs)
        p = self.padding
        self.padded_inputs[:, p:p + self.in_height, p:p + self.in_width] = to_maps(
            self.inputs, self.in_height, self.in_width, self.in_depth
        )

    def _windows(self) -> np.ndarray:
        return strided_windows(self.padded_inputs, self.kernel_size, self.stride)

    def forward(self) -> None:
        windows = self._windows()

        def convolve(od: int) -> None:
            total = np.zeros((self.out_height, self.out_width))
            for ic in np.flatnonzero(self.connection_table[:, od]):
                total += np.einsum('hwij,ij->hw', windows[ic], self.kernels[ic, od])
            self.pre_activation[od] = total + self.biases[od]

        parallel_for(self.out_depth, convolve)

    @property
    def outputs(self) -> np.ndarray:
        return to_vector(self.activation.forward(self.pre_activation))

    def backward(self, next_delta: ArrayLike) -> np.ndarray:
        next_delta = self._check_length(next_delta, self.output_size, "delta", self.name)
        delta = to_maps(next_delta, self.out_height, self.out_width, self.out_depth)
        delta *= self.activation.backward(self.pre_activation)
        windows = self._windows()

        # accumulate() writes gradients[:, od] only; propagate() writes prev_delta[ic] only.
        def accumulate(od: int) -> None:
            self.bias_gradients[od] += delta[od].sum()
            for ic in np.flatnonzero(self.connection_table[:, od]):
                self.gradients[ic, od] += np.einsum('hw,hwij->ij', delta[od], windows[ic])

        parallel_for(self.out_depth, accumulate)

        padded_h, padded_w = self.padded_inputs.shape[1:]
        prev_delta = np.zeros((self.in_depth, self.in_height, self.in_width))

        def propagate(ic: int) -> None:
            kernels = self.kernels[ic] * self.connection_table[ic][:, np.newaxis, np.newaxis]
            window_grads = np.einsum('ohw,oij->hwij', delta, kernels)
            padded = scatter_windows(window_grads, padded_h, padded_w, self.stride)
            p = self.padding
            prev_delta[ic] = padded[p:p + self.in_height, p:p + self.in_width]

        parallel_for(self.in_depth, propagate)
        return to_vector(prev_delta)

    def update(self, eta: float, mu: float, lam: float) -> None:
        momentum_step(self.kernels, self.gradients, self.prev_update, eta, mu, lam)
        momentum_step(self.biases, self.bias_gradients, self.prev_bias_update, eta, mu)
        self.kernels[~self.connection_table] = 0.0

    def generate_weights(self, lower: float = -0.1, upper: float = 0.1) -> None:
        self.kernels = np.random.uniform(lower, upper, self.kernels.shape)
        self.kernels[~self.connection_table] = 0.0
        logging.debug(f"Layer '{self.name}': kernels drawn from U[{lower:.4f}, {upper:.4f}).")

    def get_weights(self) -> np.ndarray:
        return self.kernels.reshape(-1).copy()

    def set_weights(self, weights: ArrayLike) -> None:
        weights = self._check_length(weights, self.kernels.size, "kernels", self.name)
        self.kernels = weights.reshape(self.kernels.shape).copy()
        self.kernels[~self.connection_table] = 0.0

    def get_biases(self) -> np.ndarray:
        return self.biases.copy()

    def set_biases(self, biases: ArrayLike) -> None:
        self.biases = self._check_length(biases, self.out_depth, "biases", self.name).copy()

    def weight_block(self) -> Tuple[str, np.ndarray]:
        k = self.kernel_size
        return "#Kernels", self.kernels.reshape(self.in_depth * self.out_depth, k, k)

    def bias_block(self) -> Tuple[str, np.ndarray]:
        return "#Biases", self.biases

    def describe(self) -> str:
        k = self.kernel_size
        return (
            f"Inputs:{self.in_height}x{self.in_width}x{self.in_depth}, "
            f"Outputs:{self.out_height}x{self.out_width}x{self.out_depth}, "
            f"Kernels:{self.in_depth}x{self.out_depth}x{k}x{k}, "
            f"Biases:{self.out_depth}, Stride:{self.stride}, Padding:{self.padding}"
        )


class PoolingLayer(Layer):
    """
    Spatial down-sampling with a pluggable pooling function.

    Each input map is pooled independently, so output depth equals input
    depth. Output size per axis: (in - pool_size) // stride + 1.
    """

    layer_type = "PoolingLayer"

    def __init__(
        self,
        in_height: int,
        in_width: int,
        in_depth: int,
        pool_size: int = 2,
        stride: int = 2,
        name: str = "",
        pooling: Union[str, Pooling] = 'max',
    ):
        super().__init__(name)
        if pool_size > in_height or pool_size > in_width:
            raise ValueError(
                f"Layer '{name}': pooling size {pool_size} exceeds the input {in_height}x{in_width}"
            )
        self.in_height, self.in_width, self.in_depth = in_height, in_width, in_depth
        self.pool_size = pool_size
        self.stride = stride
        self.pooling = get_pooling(pooling)

        self.out_height = (in_height - pool_size) // stride + 1
        self.out_width = (in_width - pool_size) // stride + 1
        self.input_size = in_height * in_width * in_depth
        self.output_size = self.out_height * self.out_width * in_depth

        self.input_maps = np.zeros((in_depth, in_height, in_width))
        self.inputs = np.zeros(self.input_size)
        self.pooled = np.zeros((in_depth, self.out_height, self.out_width))
        logging.debug(f"PoolingLayer '{name}' created: {self.describe()}")

    @property
    def generic_type(self) -> str:
        return self.pooling.name

    def set_inputs(self, inputs: ArrayLike) -> None:
        super().set_inputs(inputs)
        self.input_maps = to_maps(self.inputs, self.in_height, self.in_width, self.in_depth)

    def forward(self) -> None:
        self.pooled = self.pooling.forward(strided_windows(self.input_maps, self.pool_size, self.stride))

    @property
    def outputs(self) -> np.ndarray:
        return to_vector(self.pooled)

    def backward(self, next_delta: ArrayLike) -> np.ndarray:
        next_delta = self._check_length(next_delta, self.output_size, "delta", self.name)
        delta = to_maps(next_delta, self.out_height, self.out_width, self.in_depth)
        windows = strided_windows(self.input_maps, self.pool_size, self.stride)
        window_grads = self.pooling.backward(windows) * delta[..., np.newaxis, np.newaxis]
        prev_delta = np.zeros((self.in_depth, self.in_height, self.in_width))

        def scatter(d: int) -> None:
            prev_delta[d] = scatter_windows(window_grads[d], self.in_height, self.in_width, self.stride)

        parallel_for(self.in_depth, scatter)
        return to_vector(prev_delta)

    def describe(self) -> str:
        return (
            f"Inputs:{self.in_height}x{self.in_width}x{self.in_depth}, "
            f"Outputs:{self.out_height}x{self.out_width}x{self.in_depth}, "
            f"PoolingSize:{self.pool_size}x{self.pool_size}, Stride:{self.stride}"
        )


class ElementWiseLayer(Layer):
    """
    Merges groups of adjacent channels pixel by pixel.

    Output channel od reduces input channels od * stride ... od * stride +
    elem_size - 1 with the element-wise function. Spatial size is unchanged.
    """

    layer_type = "ElementWiseLayer"

    def __init__(
        self,
        in_height: int,
        in_width: int,
        in_depth: int,
        elem_size: int = 2,
        stride: int = 2,
        name: str = "",
        element_wise: Union[str, ElementWise] = 'maxout',
    ):
        super().__init__(name)
        if elem_size > in_depth:
            raise ValueError(f"Layer '{name}': group size {elem_size} exceeds input depth {in_depth}")
        self.in_height, self.in_width, self.in_depth = in_height, in_width, in_depth
        self.elem_size = elem_size
        self.stride = stride
        self.element_wise = get_element_wise(element_wise)

        self.out_depth = (in_depth - elem_size) // stride + 1
        self.input_size = in_height * in_width * in_depth
        self.output_size = in_height * in_width * self.out_depth

        self.input_maps = np.zeros((in_depth, in_height, in_width))
        self.inputs = np.zeros(self.input_size)
        self.merged = np.zeros((self.out_depth, in_height, in_width))
        logging.debug(f"ElementWiseLayer '{name}' created: {self.describe()}")

    @property
    def generic_type(self) -> str:
        return self.element_wise.name

    def _group(self, od: int) -> slice:
        start = od * self.stride
        return slice(start, start + self.elem_size)

    def set_inputs(self, inputs: ArrayLike) -> None:
        super().set_inputs(inputs)
        self.input_maps = to_maps(self.inputs, self.in_height, self.in_width, self.in_depth)

    def forward(self) -> None:
        def merge(od: int) -> None:
            self.merged[od] = self.element_wise.forward(self.input_maps[self._group(od)])

        parallel_for(self.out_depth, merge)

    @property
    def outputs(self) -> np.ndarray:
        return to_vector(self.merged)

    def backward(self, next_delta: ArrayLike) -> np.ndarray:
        next_delta = self._check_length(next_delta, self.output_size, "delta", self.name)
        delta = to_maps(next_delta, self.in_height, self.in_width, self.out_depth)
        prev_delta = np.zeros((self.in_depth, self.in_height, self.in_width))

        def route(od: int) -> None:
            group = self._group(od)
            prev_delta[group] += self.element_wise.backward(self.input_maps[group]) * delta[od]

        if self.stride >= self.elem_size:
            parallel_for(self.out_depth, route)
        else:
            # groups share input channels
            for od in range(self.out_depth):
                route(od)
        return to_vector(prev_delta)

    def describe(self) -> str:
        return (
            f"Inputs:{self.in_height}x{self.in_width}x{self.in_depth}, "
            f"Outputs:{self.in_height}x{self.in_width}x{self.out_depth}, "
            f"ElementWiseSize:{self.elem_size}, Stride:{self.stride}"
        )
