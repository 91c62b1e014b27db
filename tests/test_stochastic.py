import logging

import numpy as np
import pytest

from clear_convnet.layer import DropConnectLayer, DropOutLayer, FullyConnectedLayer

WEIGHTS = [0.2, -0.4, 0.1, 0.5, 0.3, -0.2]
BIASES = [0.1, -0.1]


@pytest.mark.parametrize("layer_class", [DropOutLayer, DropConnectLayer])
def test_zero_drop_probability_matches_fully_connected(layer_class):
    dense = FullyConnectedLayer(3, 2, "sigmoid", weights=WEIGHTS, biases=BIASES)
    dropped = layer_class(3, 2, drop_prob=0.0, activation="sigmoid", weights=WEIGHTS, biases=BIASES)
    x = np.array([0.5, -1.0, 2.0])
    delta = np.array([0.3, -0.7])

    for layer in (dense, dropped):
        layer.set_inputs(x)
        layer.forward()
    np.testing.assert_allclose(dropped.outputs, dense.outputs)
    np.testing.assert_allclose(dropped.predict_outputs, dense.predict_outputs)
    np.testing.assert_allclose(dropped.backward(delta), dense.backward(delta))

    dense.update(0.1, 0.5, 0.01)
    dropped.update(0.1, 0.5, 0.01)
    np.testing.assert_allclose(dropped.weights, dense.weights)
    np.testing.assert_allclose(dropped.biases, dense.biases)


@pytest.mark.parametrize("layer_class", [DropOutLayer, DropConnectLayer])
@pytest.mark.parametrize("drop_prob", [-0.1, 1.5])
def test_out_of_range_probability_is_clamped(caplog, layer_class, drop_prob):
    with caplog.at_level(logging.WARNING):
        layer = layer_class(3, 2, drop_prob=drop_prob, name="D")
    assert layer.drop_prob == 0.5
    assert "outside [0, 1]" in caplog.text


@pytest.mark.parametrize("layer_class", [DropOutLayer, DropConnectLayer])
def test_mask_changes_only_on_update(layer_class):
    layer = layer_class(20, 30, drop_prob=0.5)
    mask = layer.mask.copy()
    for _ in range(3):
        layer.set_inputs(np.random.rand(20))
        layer.forward()
        layer.backward(np.ones(30))
    np.testing.assert_array_equal(layer.mask, mask)

    layer.update(0.01, 0.0, 0.0)
    assert not np.array_equal(layer.mask, mask)
    assert set(np.unique(layer.mask)) <= {0.0, 1.0}


class TestDropOut:
    def test_dropped_units_output_zero_and_get_no_gradient(self):
        layer = DropOutLayer(4, 6, drop_prob=0.5, activation="sigmoid")
        layer.mask = np.array([1.0, 0.0, 1.0, 0.0, 0.0, 1.0])
        layer.set_inputs(np.random.rand(4))
        layer.forward()
        assert np.all(layer.outputs[layer.mask == 0] == 0.0)
        layer.backward(np.ones(6))
        assert np.all(layer.bias_gradients[layer.mask == 0] == 0.0)
        assert np.all(layer.gradients[:, layer.mask == 0] == 0.0)

    def test_predict_outputs_are_scaled(self):
        layer = DropOutLayer(3, 2, drop_prob=0.25, activation="tanh", weights=WEIGHTS, biases=BIASES)
        layer.set_inputs([1.0, 2.0, 3.0])
        layer.forward()
        np.testing.assert_allclose(layer.predict_outputs, np.tanh(layer.pre_activation) * 0.75)

    def test_full_drop_silences_every_unit(self):
        layer = DropOutLayer(3, 4, drop_prob=1.0)
        layer.set_inputs(np.ones(3))
        layer.forward()
        np.testing.assert_array_equal(layer.outputs, np.zeros(4))

    def test_gradients_match_finite_differences(self, gradcheck):
        layer = DropOutLayer(4, 5, drop_prob=0.4, activation="tanh")
        x = np.random.uniform(-1, 1, 4)
        probe = np.random.uniform(-1, 1, 5)
        dx, dw, db = gradcheck.analytic(layer, x, probe)
        np.testing.assert_allclose(dx, gradcheck.inputs(layer, x, probe), atol=1e-6)
        np.testing.assert_allclose(dw, gradcheck.weights(layer, x, probe), atol=1e-6)
        np.testing.assert_allclose(db, gradcheck.biases(layer, x, probe), atol=1e-6)

    def test_describe(self):
        layer = DropOutLayer(3, 2, drop_prob=0.5)
        assert layer.describe() == "Inputs:3, Outputs:2, Weights:3x2, Biases:2, DropOutProb:0.5"


class TestDropConnect:
    def test_forward_uses_masked_weights(self):
        layer = DropConnectLayer(3, 2, drop_prob=0.5, weights=WEIGHTS, biases=BIASES)
        layer.mask = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        x = np.array([1.0, 2.0, 3.0])
        layer.set_inputs(x)
        layer.forward()
        w = np.array(WEIGHTS).reshape(3, 2)
        np.testing.assert_allclose(layer.outputs, (w * layer.mask).T @ x + BIASES)

    def test_predict_outputs_use_all_weights_scaled(self):
        layer = DropConnectLayer(3, 2, drop_prob=0.5, activation="sigmoid", weights=WEIGHTS, biases=BIASES)
        x = np.array([1.0, 2.0, 3.0])
        layer.set_inputs(x)
        layer.forward()
        w = np.array(WEIGHTS).reshape(3, 2)
        expected = 1.0 / (1.0 + np.exp(-(w.T @ x + BIASES))) * 0.5
        np.testing.assert_allclose(layer.predict_outputs, expected)

    def test_gradients_match_finite_differences(self, gradcheck):
        layer = DropConnectLayer(4, 3, drop_prob=0.5, activation="sigmoid")
        x = np.random.uniform(-1, 1, 4)
        probe = np.random.uniform(-1, 1, 3)
        dx, dw, db = gradcheck.analytic(layer, x, probe)
        np.testing.assert_allclose(dx, gradcheck.inputs(layer, x, probe), atol=1e-6)
        np.testing.assert_allclose(dw, gradcheck.weights(layer, x, probe), atol=1e-6)
        np.testing.assert_allclose(db, gradcheck.biases(layer, x, probe), atol=1e-6)

    def test_describe(self):
        layer = DropConnectLayer(3, 2, drop_prob=0.3)
        assert layer.describe().endswith("DropConnectProb:0.3")
