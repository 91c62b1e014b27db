import numpy as np
import pytest

from clear_convnet import parallel


@pytest.fixture(autouse=True)
def seeded_rng():
    np.random.seed(1234)
    yield


@pytest.fixture(autouse=True)
def reset_workers():
    yield
    parallel.set_max_workers(None)


def _probe_loss(layer, x, probe):
    layer.set_inputs(x)
    layer.forward()
    return float(np.dot(layer.outputs, probe))


class GradientChecker:
    """Central-difference gradients of L = probe . layer.outputs."""

    def __init__(self, eps=1e-6):
        self.eps = eps

    def inputs(self, layer, x, probe):
        grad = np.zeros_like(x)
        for i in range(x.size):
            plus, minus = x.copy(), x.copy()
            plus[i] += self.eps
            minus[i] -= self.eps
            grad[i] = (_probe_loss(layer, plus, probe) - _probe_loss(layer, minus, probe)) / (2 * self.eps)
        return grad

    def _parameters(self, layer, x, probe, getter, setter):
        original = getter()
        grad = np.zeros_like(original)
        for i in range(original.size):
            plus, minus = original.copy(), original.copy()
            plus[i] += self.eps
            minus[i] -= self.eps
            setter(plus)
            loss_plus = _probe_loss(layer, x, probe)
            setter(minus)
            loss_minus = _probe_loss(layer, x, probe)
            grad[i] = (loss_plus - loss_minus) / (2 * self.eps)
        setter(original)
        return grad

    def weights(self, layer, x, probe):
        return self._parameters(layer, x, probe, layer.get_weights, layer.set_weights)

    def biases(self, layer, x, probe):
        return self._parameters(layer, x, probe, layer.get_biases, layer.set_biases)

    @staticmethod
    def analytic(layer, x, probe):
        """Returns (input gradient, flat weight gradient, flat bias gradient)."""
        layer.zero_grad()
        layer.set_inputs(x)
        layer.forward()
        dx = layer.backward(probe)
        return dx, layer.gradients.reshape(-1).copy(), layer.bias_gradients.reshape(-1).copy()


@pytest.fixture
def gradcheck():
    return GradientChecker()
