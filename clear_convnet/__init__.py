"""From-scratch feed-forward convolutional / fully connected networks in numpy."""

from .activations import Activation, Identity, ReLU, Sigmoid, Tanh, get_activation
from .conv import ConvolutionalLayer, ElementWiseLayer, PoolingLayer
from .elementwises import ElementWise, get_element_wise
from .layer import (
    DropConnectLayer,
    DropOutLayer,
    FullyConnectedLayer,
    Layer,
    MaxoutLayer,
    SoftmaxLayer,
)
from .losses import MSE, BinaryCrossEntropy, Loss, MultiCrossEntropy, get_loss
from .network import Network
from .parallel import parallel_for, set_max_workers
from .poolings import Pooling, get_pooling
from .tensor import ShapeError, to_maps, to_matrix, to_vector
from .weights_io import WeightFormatError, format_block, load_values, parse_block

__version__ = "0.1.0"
