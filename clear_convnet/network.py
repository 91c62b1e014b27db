import numpy as np
from typing import Callable, Dict, List, Optional, Tuple, Union
import logging
import time

from .layer import Layer
from .losses import Loss, get_loss
from .tensor import ArrayLike
from .weights_io import write_layer_biases, write_layer_weights

EpochHook = Callable[[], bool]
BatchHook = Callable[[float], object]


class Network:
    """
    A feed-forward network: an ordered chain of layers plus a loss function.

    Manages the training forward pass, backpropagation, parameter updates,
    the online / mini-batch / full-batch training loop, inference and
    structure reporting.

    The hyperparameters ``eta`` (learning rate), ``mu`` (momentum) and
    ``lam`` (weight decay) are public. ``train`` sets them when it starts and
    every update reads them again, so an ``on_epoch`` hook may change them
    between epochs.
    """

    def __init__(self, *layers: Layer, loss: Union[str, Loss] = "mse"):
        """
        Args:
            *layers: Layers in forward order.
            loss: Loss name ('mse', 'cross_entropy', 'binary_cross_entropy') or a Loss instance.
        """
        self.layers: List[Layer] = list(layers)
        self.loss = get_loss(loss)
        self.eta = 0.0
        self.mu = 0.0
        self.lam = 0.0

        self.training_history: Dict[str, List] = {}
        logging.info(f"Created network with {len(self.layers)} layers and {self.loss.name} loss")

    def add_layer(self, layer: Layer) -> None:
        self.layers.append(layer)

    def add_layers(self, *layers: Layer) -> None:
        self.layers.extend(layers)

    def _require_layers(self) -> None:
        if not self.layers:
            raise ValueError("Network has no layers")

    def forward(self, inputs: ArrayLike) -> np.ndarray:
        """Training-time forward pass for one sample. Returns the last layer's ``outputs``."""
        self._require_layers()
        self.layers[0].set_inputs(inputs)
        for i, layer in enumerate(self.layers):
            layer.forward()
            if i + 1 < len(self.layers):
                self.layers[i + 1].set_inputs(layer.outputs)
        return self.layers[-1].outputs

    def prediction(self, inputs: ArrayLike) -> np.ndarray:
        """Inference for one sample, using ``predict_outputs`` at every stage."""
        self._require_layers()
        self.layers[0].set_inputs(inputs)
        for i, layer in enumerate(self.layers):
            layer.forward()
            if i + 1 < len(self.layers):
                self.layers[i + 1].set_inputs(layer.predict_outputs)
        return self.layers[-1].predict_outputs

    def predict(self, inputs: ArrayLike) -> np.ndarray:
        """Runs ``prediction`` over every row of a 2-D input array."""
        inputs = np.atleast_2d(np.asarray(inputs, dtype=float))
        return np.array([self.prediction(x) for x in inputs])

    def loss_gradient(self, outputs: np.ndarray, targets: ArrayLike) -> Tuple[float, np.ndarray]:
        """Returns the summed error and the per-output gradient for one sample."""
        targets = np.asarray(targets, dtype=float).reshape(-1)
        if targets.shape != outputs.shape:
            raise ValueError(
                f"{self.loss.name}: output shape {outputs.shape} must match target shape {targets.shape}"
            )
        error = float(np.sum(self.loss.forward(outputs, targets)))
        return error, self.loss.backward(outputs, targets)

    def backward(self, gradient: np.ndarray) -> np.ndarray:
        """Backpropagates a loss gradient through every layer, last to first."""
        for layer in reversed(self.layers):
            gradient = layer.backward(gradient)
        return gradient

    def update(self) -> None:
        """Applies the accumulated gradients of every layer with the current eta, mu and lam."""
        for layer in self.layers:
            layer.update(self.eta, self.mu, self.lam)

    def zero_grad(self) -> None:
        for layer in self.layers:
            layer.zero_grad()

    def train_batch(self, inputs: np.ndarray, targets: np.ndarray) -> float:
        """
        Forward and backward pass over every sample of a batch, then one update.

        Args:
            inputs: Batch inputs, one sample per row.
            targets: Batch targets, one sample per row.

        Returns:
            The summed error over the batch.
        """
        batch_error = 0.0
        for x, t in zip(inputs, targets):
            outputs = self.forward(x)
            error, gradient = self.loss_gradient(outputs, t)
            batch_error += error
            self.backward(gradient)
        self.update()
        return batch_error

    def train(
        self,
        inputs: ArrayLike,
        targets: ArrayLike,
        batch_size: int = 20,
        epochs: int = 10000,
        learning_rate: float = 0.05,
        momentum: float = 0.0,
        weight_decay: float = 0.0,
        on_epoch: Optional[EpochHook] = None,
        on_batch: Optional[BatchHook] = None,
        shuffle: bool = False,
        validation_data: Optional[Tuple[ArrayLike, ArrayLike]] = None,
        log_every: int = 10,
    ) -> Dict[str, List]:
        """
        Trains the network by backpropagation.

        The batch regime follows from ``batch_size``: 1 trains online (one
        update per sample), ``batch_size <= 0`` or ``>= len(inputs)`` trains
        full batch, anything in between trains on consecutive mini-batches
        (the last one may be shorter).

        The effective learning rate is ``eta = learning_rate * sqrt(batch_size)``.

        Args:
            inputs: Training inputs, one flat sample per row.
            targets: Training targets, one flat sample per row.
            batch_size: Samples per update. Values <= 0 or above the dataset size fall
                        back to a full batch, and the effective learning rate
                        ``learning_rate * sqrt(batch_size)`` uses that capped size,
                        not the value passed in.
            epochs: Maximum number of passes over the data.
            learning_rate: Base learning rate.
            momentum: Momentum coefficient mu.
            weight_decay: L2 weight decay coefficient lambda.
            on_epoch: Called after every epoch; a truthy return stops training.
            on_batch: Called after every update with the batch error divided by
                      the number of samples in the batch. Its return value is ignored.
            shuffle: Whether to visit the samples in a new random order every epoch.
            validation_data: Optional (inputs, targets) evaluated with ``evaluate``
                             after every epoch.
            log_every: Log progress every `log_every` epochs.

        Returns:
            A dictionary containing the training history.

        Raises:
            ValueError: If the dataset is empty or inputs and targets differ in length.
        """
        self._require_layers()
        inputs = np.asarray(inputs, dtype=float)
        targets = np.asarray(targets, dtype=float)
        num_samples = len(inputs)
        if num_samples == 0:
            raise ValueError("Cannot train on an empty dataset.")
        if len(targets) != num_samples:
            raise ValueError(
                f"Number of inputs ({num_samples}) and targets ({len(targets)}) must match."
            )
        inputs = inputs.reshape(num_samples, -1)
        targets = targets.reshape(num_samples, -1)

        if batch_size > num_samples or batch_size <= 0:
            logging.warning(
                f"Batch size ({batch_size}) is outside [1, {num_samples}]. "
                f"Using full batch ({num_samples})."
            )
            batch_size = num_samples

        self.eta = learning_rate * np.sqrt(batch_size)
        self.mu = momentum
        self.lam = weight_decay

        self.training_history = {
            'epoch': [],
            'loss': [],
            'learning_rate': [],
            'batch_size': [],
            'time_per_epoch': [],
        }
        if validation_data is not None:
            self.training_history['val_loss'] = []
            self.training_history['val_accuracy'] = []

        regime = "online" if batch_size == 1 else "full-batch" if batch_size == num_samples else "mini-batch"
        logging.info(
            f"Training start: {num_samples} samples, {regime} (batch_size={batch_size}), "
            f"eta={self.eta:.5f}, mu={self.mu}, lambda={self.lam}"
        )
        start_time_total = time.time()

        for epoch in range(epochs):
            epoch_start_time = time.time()
            order = np.random.permutation(num_samples) if shuffle else np.arange(num_samples)
            epoch_error = 0.0

            for start in range(0, num_samples, batch_size):
                batch = order[start:start + batch_size]
                batch_error = self.train_batch(inputs[batch], targets[batch])
                if not np.isfinite(batch_error):
                    logging.warning(f"Epoch {epoch + 1}: non-finite batch error {batch_error}.")
                epoch_error += batch_error
                if on_batch is not None:
                    on_batch(batch_error / len(batch))

            epoch_loss = epoch_error / num_samples
            epoch_time = time.time() - epoch_start_time

            self.training_history['epoch'].append(epoch)
            self.training_history['loss'].append(epoch_loss)
            self.training_history['learning_rate'].append(self.eta)
            self.training_history['batch_size'].append(batch_size)
            self.training_history['time_per_epoch'].append(epoch_time)

            msg = f"Epoch {epoch + 1}/{epochs} - loss: {epoch_loss:.5f}"
            if validation_data is not None:
                metrics = self.evaluate(*validation_data)
                self.training_history['val_loss'].append(metrics['loss'])
                self.training_history['val_accuracy'].append(metrics['accuracy'])
                msg += f" - val_loss: {metrics['loss']:.5f} - val_accuracy: {metrics['accuracy']:.4f}"
            msg += f" - time: {epoch_time:.2f}s"
            if log_every > 0 and (epoch % log_every == 0 or epoch == epochs - 1):
                logging.info(msg)
            else:
                logging.debug(msg)

            if on_epoch is not None and on_epoch():
                logging.info(f"Training stopped by on_epoch hook after epoch {epoch + 1}.")
                break

        logging.info(f"Training finished. Elapsed time: {time.time() - start_time_total:.2f}s")
        return self.training_history

    def test(self, inputs: ArrayLike, targets: ArrayLike) -> Tuple[np.ndarray, float]:
        """Predicts one sample and returns the prediction with its error."""
        outputs = self.prediction(inputs)
        error, _ = self.loss_gradient(outputs, targets)
        logging.info(f"Test - input: {np.asarray(inputs).ravel()} output: {outputs} error: {error:.6f}")
        return outputs, error

    @staticmethod
    def _class_of(values: np.ndarray) -> int:
        """Class index of an output or target vector; a single unit is thresholded at 0.5."""
        if values.size == 1:
            return int(values[0] >= 0.5)
        return int(np.argmax(values))

    def evaluate(self, inputs: ArrayLike, targets: ArrayLike) -> Dict[str, Union[float, np.ndarray]]:
        """
        Evaluates the network on a dataset with inference-time outputs.

        Multi-unit outputs are classified by arg-max. A single output unit is
        read as a binary decision, ``output >= 0.5``, compared with ``target >= 0.5``.

        Returns:
            A dictionary with the mean per-sample 'loss', the 'accuracy' and a
            'confusion' matrix counted as ``confusion[predicted, target]``.
            The matrix is (n_out, n_out), or (2, 2) for a single output unit.
        """
        self._require_layers()
        inputs = np.asarray(inputs, dtype=float)
        targets = np.asarray(targets, dtype=float)
        if len(inputs) != len(targets):
            raise ValueError(
                f"Number of inputs ({len(inputs)}) and targets ({len(targets)}) must match."
            )
        n_out = self.layers[-1].output_size
        n_classes = 2 if n_out == 1 else n_out
        confusion = np.zeros((n_classes, n_classes), dtype=int)
        if len(inputs) == 0:
            return {'loss': 0.0, 'accuracy': 0.0, 'confusion': confusion}
        targets = targets.reshape(len(targets), -1)

        total_error = 0.0
        for x, t in zip(inputs.reshape(len(inputs), -1), targets):
            outputs = self.prediction(x)
            error, _ = self.loss_gradient(outputs, t)
            total_error += error
            confusion[self._class_of(outputs), self._class_of(t)] += 1
        return {
            'loss': total_error / len(inputs),
            'accuracy': float(np.trace(confusion)) / len(inputs),
            'confusion': confusion,
        }

    def structure_mismatches(self) -> List[Tuple[int, int]]:
        """Index pairs (i, i + 1) of adjacent layers whose sizes do not line up."""
        return [
            (i, i + 1)
            for i in range(len(self.layers) - 1)
            if not self.layers[i + 1].check_size(self.layers[i].output_size)
        ]

    def network_check(self) -> bool:
        """Checks that every layer accepts its predecessor's output size.

        Logs a warning per mismatch and returns False if any exist. Never raises.
        """
        mismatches = self.structure_mismatches()
        for i, j in mismatches:
            first, second = self.layers[i], self.layers[j]
            if first.name and second.name:
                label = f"{first.name} and {second.name}"
            else:
                label = f"{i} and {j}"
            logging.warning(
                f"Network structure error between layers {label}: "
                f"{first.output_size} outputs feed {second.input_size} inputs."
            )
        return not mismatches

    def structure(self) -> List[Dict[str, str]]:
        """Per-layer type, strategy and one-line shape summary."""
        return [
            {
                'name': layer.name,
                'type': layer.layer_type,
                'generic_type': layer.generic_type,
                'summary': layer.describe(),
            }
            for layer in self.layers
        ]

    def network_structure(self, detailed: bool = True) -> str:
        """Numbered structure report, one line per layer plus the output/loss line."""
        lines = []
        for i, info in enumerate(self.structure(), start=1):
            if detailed:
                lines.append(f"{i}, {info['type']}, {info['generic_type']}, {info['summary']}")
            else:
                lines.append(f"{i}, {info['type']}")
        tail = f"{len(self.layers) + 1}, OutputLayer"
        lines.append(f"{tail}, {self.loss.name}" if detailed else tail)
        return "\n".join(lines) + "\n"

    def summary(self) -> None:
        """Logs the structure report."""
        for line in self.network_structure().splitlines():
            logging.info(line)

    def _parameter_paths(self, prefix: str, kind: str) -> List[Tuple[Layer, str]]:
        return [
            (layer, f"{prefix}_{kind}_{layer.name or i}.txt")
            for i, layer in enumerate(self.layers)
        ]

    def write_weights(self, prefix: str = "") -> List[str]:
        """
        Writes ``{prefix}_weight_{layer name}.txt`` for every layer that has weights.

        Unnamed layers use their index instead of a name.

        Returns:
            The paths written.
        """
        written = []
        for layer, path in self._parameter_paths(prefix, "weight"):
            if write_layer_weights(layer, path):
                written.append(path)
        return written

    def write_biases(self, prefix: str = "") -> List[str]:
        """Writes ``{prefix}_biase_{layer name}.txt`` for every layer that has biases."""
        written = []
        for layer, path in self._parameter_paths(prefix, "biase"):
            if write_layer_biases(layer, path):
                written.append(path)
        return written

    def __len__(self) -> int:
        return len(self.layers)

    def __repr__(self) -> str:
        return f"Network(layers={len(self.layers)}, loss={self.loss.name})"
