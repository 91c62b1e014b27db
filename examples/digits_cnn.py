"""
Digit classification with a small convolutional network.

Trains on the sklearn 8x8 digits dataset:
1. Load and normalise the images, one-hot encode the labels
2. Build conv -> max pooling -> maxout merge -> dropout FC -> softmax
3. Train with mini-batches, momentum and weight decay, evaluating every epoch
4. Write the learned weights and biases to text files
5. Plot training loss and test accuracy
"""

import os
import time
import logging
import numpy as np
import matplotlib.pyplot as plt
from sklearn.datasets import load_digits
from sklearn.model_selection import train_test_split

from clear_convnet import (
    ConvolutionalLayer,
    DropOutLayer,
    ElementWiseLayer,
    Network,
    PoolingLayer,
    SoftmaxLayer,
)

logger = logging.getLogger("DigitsCNN")


def load_digits_dataset(num_classes):
    digits = load_digits()
    X = digits.data.astype(float) / 16.0  # pixel values are 0-16
    y = np.eye(num_classes)[digits.target]
    logger.info(f"Dataset loaded. X shape: {X.shape}, y shape: {y.shape}")
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=0.2, random_state=42, stratify=digits.target
    )
    logger.info(f"Split into Train: {X_train.shape}, Test: {X_test.shape}")
    return (X_train, y_train), (X_test, y_test)


def build_network(num_classes):
    # 8x8x1 -> conv 3x3 pad 1 -> 8x8x8 -> pool 2 -> 4x4x8 -> maxout pairs -> 4x4x4 = 64
    return Network(
        ConvolutionalLayer(8, 8, 1, kernel_size=3, out_depth=8, stride=1, padding=1,
                           name="C1", activation='relu'),
        PoolingLayer(8, 8, 8, pool_size=2, stride=2, name="P2", pooling='max'),
        ElementWiseLayer(4, 4, 8, elem_size=2, stride=2, name="E3", element_wise='maxout'),
        DropOutLayer(64, 32, drop_prob=0.2, activation='tanh', name="D4"),
        SoftmaxLayer(32, num_classes, name="S5"),
        loss='cross_entropy',
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    # --- Configuration ---
    EPOCHS = 15
    BATCH_SIZE = 16
    LEARNING_RATE = 0.02
    MOMENTUM = 0.5
    WEIGHT_DECAY = 1e-4
    LR_DECAY = 0.95
    NUM_CLASSES = 10
    OUTPUT_PREFIX = os.path.join("results", "digits")

    (X_train, y_train), (X_test, y_test) = load_digits_dataset(NUM_CLASSES)

    network = build_network(NUM_CLASSES)
    if not network.network_check():
        raise SystemExit("Network layers do not fit together")
    logger.info(f"Model Architecture:\n{network.network_structure()}")

    test_accuracies = []

    def on_epoch():
        metrics = network.evaluate(X_test, y_test)
        test_accuracies.append(metrics['accuracy'])
        logger.info(f"Test loss: {metrics['loss']:.4f} | Test accuracy: {metrics['accuracy'] * 100:.2f}%")
        network.eta *= LR_DECAY
        return metrics['accuracy'] > 0.99

    start_time_total = time.time()
    history = network.train(
        X_train, y_train,
        batch_size=BATCH_SIZE,
        epochs=EPOCHS,
        learning_rate=LEARNING_RATE,
        momentum=MOMENTUM,
        weight_decay=WEIGHT_DECAY,
        shuffle=True,
        on_epoch=on_epoch,
        log_every=1,
    )
    logger.info(f"Total Training Time: {time.time() - start_time_total:.2f}s")

    final = network.evaluate(X_test, y_test)
    logger.info(f"Final Test Accuracy: {final['accuracy'] * 100:.2f}%")
    logger.info(f"Confusion matrix (predicted x actual):\n{final['confusion']}")
    predictions = np.argmax(network.predict(X_test[:10]), axis=1)
    logger.info(f"Predicted: {predictions}")
    logger.info(f"Actual:    {np.argmax(y_test[:10], axis=1)}")

    os.makedirs(os.path.dirname(OUTPUT_PREFIX), exist_ok=True)
    network.write_weights(OUTPUT_PREFIX)
    network.write_biases(OUTPUT_PREFIX)

    epochs_run = range(1, len(history['loss']) + 1)
    plt.figure(figsize=(12, 5))
    plt.subplot(1, 2, 1)
    plt.plot(epochs_run, history['loss'], label='Training Loss', marker='o')
    plt.xlabel('Epoch')
    plt.ylabel('Loss')
    plt.legend()
    plt.title('Training Loss over Epochs')
    plt.grid(True)

    plt.subplot(1, 2, 2)
    plt.plot(epochs_run, test_accuracies, label='Test Accuracy', color='orange', marker='o')
    plt.xlabel('Epoch')
    plt.ylabel('Accuracy')
    plt.ylim(0, 1.05)
    plt.legend()
    plt.title('Test Accuracy over Epochs')
    plt.grid(True)

    plt.tight_layout()
    plt.show()
