import logging

import numpy as np
import pytest

from clear_convnet import (
    ConvolutionalLayer,
    DropOutLayer,
    ElementWiseLayer,
    FullyConnectedLayer,
    Network,
    PoolingLayer,
    SoftmaxLayer,
)
from clear_convnet.tensor import ShapeError
from clear_convnet.weights_io import load_values

CORNERS = np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]])


def linear_targets(x):
    return np.array([0.5 * x[0] + 0.25 * x[1] + 0.1, 0.25 * x[0] + 0.5 * x[1]])


def identity_network():
    return Network(
        FullyConnectedLayer(2, 2, weights=[0.5, 0.0, 0.0, 0.5], biases=[0.0, 0.0], name="F1"),
        FullyConnectedLayer(2, 2, weights=[0.5, 0.0, 0.0, 0.5], biases=[0.0, 0.0], name="F2"),
        loss="mse",
    )


def test_online_training_converges_on_corner_inputs():
    net = identity_network()
    targets = np.array([linear_targets(x) for x in CORNERS])

    history = net.train(CORNERS, targets, batch_size=1, epochs=2000, learning_rate=0.1)

    epoch_errors = np.array(history['loss']) * len(CORNERS)
    assert epoch_errors[-1] < 0.05
    assert epoch_errors[-10:].mean() < epoch_errors[:10].mean()
    for x, t in zip(CORNERS, targets):
        np.testing.assert_allclose(net.prediction(x), t, atol=0.1)


def test_on_epoch_can_stop_training():
    net = identity_network()
    targets = np.array([linear_targets(x) for x in CORNERS])
    calls = []

    def on_epoch():
        calls.append(1)
        return len(calls) == 3

    history = net.train(CORNERS, targets, batch_size=1, epochs=100, on_epoch=on_epoch)
    assert len(history['epoch']) == 3


def test_on_epoch_may_change_hyperparameters():
    net = identity_network()
    targets = np.array([linear_targets(x) for x in CORNERS])

    def freeze():
        net.eta = 0.0
        return False

    net.train(CORNERS, targets, batch_size=1, epochs=1, on_epoch=freeze)
    weights = net.layers[0].get_weights()
    net.train_batch(CORNERS, targets)
    np.testing.assert_array_equal(net.layers[0].get_weights(), weights)


@pytest.mark.parametrize(
    "batch_size, expected_sizes",
    [(1, [1] * 10), (4, [4, 4, 2]), (10, [10]), (0, [10]), (25, [10])],
)
def test_batch_regimes(batch_size, expected_sizes):
    net = Network(FullyConnectedLayer(2, 1), loss="mse")
    inputs = np.random.rand(10, 2)
    targets = np.zeros((10, 1))
    errors = []

    net.train(inputs, targets, batch_size=batch_size, epochs=1, learning_rate=0.0,
              on_batch=errors.append)

    assert len(errors) == len(expected_sizes)
    # with a zero learning rate the weights never move, so errors can be recomputed
    start = 0
    for size, reported in zip(expected_sizes, errors):
        total = sum(net.loss(net.forward(x), t)
                    for x, t in zip(inputs[start:start + size], targets[start:start + size]))
        assert reported == pytest.approx(total / size)
        start += size


def test_effective_learning_rate_scales_with_batch_size():
    net = Network(FullyConnectedLayer(2, 1), loss="mse")
    history = net.train(np.random.rand(16, 2), np.zeros((16, 1)), batch_size=4, epochs=1,
                        learning_rate=0.05, momentum=0.3, weight_decay=0.001)
    assert net.eta == pytest.approx(0.1)
    assert net.mu == 0.3
    assert net.lam == 0.001
    assert history['learning_rate'] == [pytest.approx(0.1)]


def test_oversized_batch_logs_a_warning(caplog):
    net = Network(FullyConnectedLayer(2, 1))
    with caplog.at_level(logging.WARNING):
        history = net.train(np.random.rand(3, 2), np.zeros((3, 1)), batch_size=50, epochs=1)
    assert history['batch_size'] == [3]
    assert "full batch" in caplog.text
    assert net.eta == pytest.approx(0.05 * np.sqrt(3))


def test_train_rejects_bad_datasets():
    net = Network(FullyConnectedLayer(2, 1))
    with pytest.raises(ValueError, match="must match"):
        net.train(np.zeros((3, 2)), np.zeros((2, 1)), epochs=1)
    with pytest.raises(ValueError, match="empty"):
        net.train([], [], epochs=1)


def test_wrong_sample_size_raises_shape_error():
    net = Network(FullyConnectedLayer(3, 1))
    with pytest.raises(ShapeError):
        net.prediction([1.0, 2.0])


def test_prediction_uses_inference_outputs():
    net = Network(
        DropOutLayer(2, 3, drop_prob=0.5, weights=np.ones(6)),
        FullyConnectedLayer(3, 1, weights=np.ones(3)),
    )
    # every hidden unit outputs 2, scaled by 0.5 at inference
    np.testing.assert_allclose(net.prediction([1.0, 1.0]), [3.0])


def test_validation_history_and_evaluate():
    net = Network(FullyConnectedLayer(2, 2, "sigmoid"), loss="mse")
    inputs = np.array([[1.0, 0.0], [0.0, 1.0]])
    targets = np.eye(2)
    history = net.train(inputs, targets, batch_size=2, epochs=3, validation_data=(inputs, targets))
    assert len(history['val_loss']) == 3
    metrics = net.evaluate(inputs, targets)
    assert set(metrics) == {'loss', 'accuracy', 'confusion'}
    assert metrics['confusion'].sum() == 2
    assert 0.0 <= metrics['accuracy'] <= 1.0


def test_single_output_accuracy_uses_a_threshold():
    net = Network(FullyConnectedLayer(2, 1, "sigmoid", weights=[0.0, 0.0], biases=[-5.0]),
                  loss="binary_cross_entropy")
    metrics = net.evaluate(CORNERS, [[0.0], [1.0], [1.0], [0.0]])
    # every prediction is close to 0, so only the two zero targets match
    assert metrics['accuracy'] == pytest.approx(0.5)
    np.testing.assert_array_equal(metrics['confusion'], [[2, 2], [0, 0]])


def test_confusion_matrix_counts_predicted_against_target():
    net = Network(FullyConnectedLayer(3, 3, weights=np.eye(3).ravel(), biases=np.zeros(3)))
    inputs = [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [1.0, 0.0, 0.0]]
    targets = [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [0.0, 0.0, 1.0]]
    metrics = net.evaluate(inputs, targets)
    np.testing.assert_array_equal(metrics['confusion'], [[1, 0, 1], [0, 1, 0], [0, 0, 1]])
    assert metrics['accuracy'] == pytest.approx(0.75)


def test_test_returns_prediction_and_error():
    net = Network(FullyConnectedLayer(2, 1, weights=[1.0, 1.0]), loss="mse")
    outputs, error = net.test([1.0, 2.0], [1.0])
    np.testing.assert_allclose(outputs, [3.0])
    assert error == pytest.approx(2.0)


class TestStructure:
    def build(self):
        return Network(
            ConvolutionalLayer(8, 8, 1, kernel_size=3, out_depth=4, padding=1, name="C1",
                               activation="relu"),
            PoolingLayer(8, 8, 4, pool_size=2, stride=2, name="P2"),
            ElementWiseLayer(4, 4, 4, elem_size=2, stride=2, name="E3"),
            FullyConnectedLayer(32, 10, "tanh", name="F4"),
            SoftmaxLayer(10, 3, name="S5"),
            loss="cross_entropy",
        )

    def test_consistent_network_passes_check(self):
        assert self.build().network_check()

    def test_mismatch_is_reported_by_name(self, caplog):
        net = Network(FullyConnectedLayer(4, 3, name="A"), FullyConnectedLayer(2, 1, name="B"))
        with caplog.at_level(logging.WARNING):
            assert not net.network_check()
        assert "A and B" in caplog.text
        assert net.structure_mismatches() == [(0, 1)]

    def test_mismatch_falls_back_to_indices(self, caplog):
        net = Network(FullyConnectedLayer(4, 3), FullyConnectedLayer(2, 1))
        with caplog.at_level(logging.WARNING):
            net.network_check()
        assert "0 and 1" in caplog.text

    def test_network_structure_report(self):
        lines = self.build().network_structure().splitlines()
        assert len(lines) == 6
        assert lines[0] == (
            "1, ConvolutionalLayer, ReLU, Inputs:8x8x1, Outputs:8x8x4, "
            "Kernels:1x4x3x3, Biases:4, Stride:1, Padding:1"
        )
        assert lines[1].startswith("2, PoolingLayer, Max, ")
        assert lines[4].startswith("5, SoftmaxLayer, Softmax, ")
        assert lines[5] == "6, OutputLayer, MultiClassCrossEntropy"

    def test_short_structure_report(self):
        lines = self.build().network_structure(detailed=False).splitlines()
        assert lines[2] == "3, ElementWiseLayer"
        assert lines[-1] == "6, OutputLayer"

    def test_small_cnn_trains_end_to_end(self):
        net = self.build()
        inputs = np.random.rand(6, 64)
        targets = np.eye(3)[[0, 1, 2, 0, 1, 2]]
        history = net.train(inputs, targets, batch_size=3, epochs=2, learning_rate=0.01)
        assert len(history['loss']) == 2
        assert np.all(np.isfinite(history['loss']))
        assert net.prediction(inputs[0]).sum() == pytest.approx(1.0)


def test_write_and_reload_parameters(tmp_path):
    net = Network(
        ConvolutionalLayer(4, 4, 1, kernel_size=3, out_depth=2, name="C1"),
        PoolingLayer(2, 2, 2, pool_size=2, stride=2, name="P2"),
        FullyConnectedLayer(2, 3, name="F3"),
    )
    prefix = str(tmp_path / "run")

    weight_files = net.write_weights(prefix)
    bias_files = net.write_biases(prefix)

    assert weight_files == [f"{prefix}_weight_C1.txt", f"{prefix}_weight_F3.txt"]
    assert bias_files == [f"{prefix}_biase_C1.txt", f"{prefix}_biase_F3.txt"]
    np.testing.assert_array_equal(load_values(weight_files[0], "#Kernels"), net.layers[0].get_weights())
    np.testing.assert_array_equal(load_values(weight_files[1]), net.layers[2].get_weights())

    clone = FullyConnectedLayer(2, 3, weights=load_values(weight_files[1]),
                                biases=load_values(bias_files[1], "#Biases"))
    np.testing.assert_array_equal(clone.weights, net.layers[2].weights)
