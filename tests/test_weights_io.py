import numpy as np
import pytest

from clear_convnet.conv import ConvolutionalLayer, PoolingLayer
from clear_convnet.layer import MaxoutLayer
from clear_convnet.weights_io import (
    WeightFormatError,
    format_block,
    load_values,
    parse_block,
    write_layer_biases,
    write_layer_weights,
)


def test_bias_block_layout():
    assert format_block("#Biases", [0.5, -1.0]) == "#Biases\n2\n0.5\t-1.0\t\n"


def test_weight_block_layout():
    text = format_block("#Weights", [[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
    assert text == "#Weights\n3\t2\n1.0\t2.0\t\n3.0\t4.0\t\n5.0\t6.0\t\n"


def test_kernel_block_separates_depth_slices():
    text = format_block("#Kernels", np.zeros((2, 2, 2)))
    lines = text.split("\n")
    assert lines[:2] == ["#Kernels", "2\t2\t2"]
    assert lines[4] == ""
    assert lines[7] == ""


def test_round_trip_is_exact():
    values = np.random.randn(3, 2, 4) / 7.0
    parsed = parse_block(format_block("#Kernels", values))
    np.testing.assert_array_equal(parsed, values.ravel())


def test_unknown_tag():
    with pytest.raises(WeightFormatError):
        format_block("#Outputs", [1.0])
    with pytest.raises(WeightFormatError, match="Unknown block tag"):
        parse_block("#Inputs\n1\n0.0\t\n")


def test_unexpected_tag():
    with pytest.raises(WeightFormatError, match="Expected a #Weights block"):
        parse_block("#Biases\n1\n0.0\t\n", expected_tag="#Weights")


def test_value_count_must_match_dimensions():
    with pytest.raises(WeightFormatError, match="holds 3"):
        parse_block("#Weights\n2\t2\n1\t2\t\n3\t\n")


def test_malformed_dimension_line():
    with pytest.raises(WeightFormatError):
        parse_block("#Biases\ntwo\n1\t2\t\n")


def test_weight_format_error_is_a_value_error():
    assert issubclass(WeightFormatError, ValueError)


def test_maxout_biases_are_written_as_a_matrix(tmp_path):
    layer = MaxoutLayer(3, 2, biases=np.arange(6.0))
    path = tmp_path / "maxout_biases.txt"
    assert write_layer_biases(layer, str(path))
    assert path.read_text().startswith("#Biases\n3\t2\n")
    np.testing.assert_array_equal(load_values(str(path)), np.arange(6.0))


def test_layer_files_round_trip(tmp_path):
    layer = ConvolutionalLayer(5, 5, 2, kernel_size=3, out_depth=2, biases=[0.25, -0.75])
    weights_path = str(tmp_path / "w.txt")
    biases_path = str(tmp_path / "b.txt")
    write_layer_weights(layer, weights_path)
    write_layer_biases(layer, biases_path)

    restored = ConvolutionalLayer(5, 5, 2, kernel_size=3, out_depth=2,
                                  kernels=load_values(weights_path),
                                  biases=load_values(biases_path))
    np.testing.assert_array_equal(restored.kernels, layer.kernels)
    np.testing.assert_array_equal(restored.biases, layer.biases)


def test_layers_without_parameters_write_nothing(tmp_path):
    layer = PoolingLayer(4, 4, 1)
    path = tmp_path / "none.txt"
    assert not write_layer_weights(layer, str(path))
    assert not path.exists()
