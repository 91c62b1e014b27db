import logging
import numpy as np
import matplotlib.pyplot as plt

from clear_convnet import FullyConnectedLayer, Network


def linear_map_example():
    """Two identity layers learning a linear map of the XOR corner inputs."""
    logger = logging.getLogger("LinearMapExample")
    logger.setLevel(logging.INFO)

    logger.info("--- Running linear map example ---")
    X = np.array([[0, 0], [0, 1], [1, 0], [1, 1]], dtype=float)
    y = np.array([[0.5 * a + 0.25 * b + 0.1, 0.25 * a + 0.5 * b] for a, b in X])

    network = Network(
        FullyConnectedLayer(2, 2, 'identity', name="F1", weights=[0.5, 0, 0, 0.5]),
        FullyConnectedLayer(2, 2, 'identity', name="F2", weights=[0.5, 0, 0, 0.5]),
        loss='mse',
    )
    logger.info(f"Network structure:\n{network.network_structure()}")

    history = network.train(X, y, batch_size=1, epochs=2000, learning_rate=0.1, log_every=200)

    for inputs, target in zip(X, y):
        pred = network.prediction(inputs)
        logger.info(f"Input: {inputs}, Target: {target}, Prediction: {np.round(pred, 4)}")

    plt.figure("Linear map training history", figsize=(8, 5))
    plt.plot(history['epoch'], history['loss'], label='Training Loss')
    plt.xlabel('Epoch')
    plt.ylabel('Loss (MSE)')
    plt.yscale('log')
    plt.legend()
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    return history


def xor_example():
    """Tanh hidden layer + sigmoid output on XOR, mini-batch with momentum."""
    logger = logging.getLogger("XORExample")
    logger.setLevel(logging.INFO)

    logger.info("--- Running XOR Example ---")
    X = np.array([[0, 0], [0, 1], [1, 0], [1, 1]], dtype=float)
    y = np.array([[0], [1], [1], [0]], dtype=float)

    network = Network(
        FullyConnectedLayer(2, 4, 'tanh', name="H1", weights=np.random.uniform(-1, 1, 8)),
        FullyConnectedLayer(4, 1, 'sigmoid', name="O2"),
        loss='binary_cross_entropy',
    )
    if not network.network_check():
        raise SystemExit("Network layers do not fit together")

    batch_errors = []
    history = network.train(
        X, y,
        batch_size=2,
        epochs=3000,
        learning_rate=0.2,
        momentum=0.5,
        on_batch=batch_errors.append,
        on_epoch=lambda: bool(batch_errors) and batch_errors[-1] < 1e-3,
        log_every=500,
    )

    correct = 0
    for inputs, target in zip(X, y):
        pred = network.prediction(inputs)
        is_correct = (pred[0] >= 0.5) == bool(target[0])
        correct += int(is_correct)
        logger.info(f"Input: {inputs}, Target: {target[0]}, Prediction: {pred[0]:.4f} "
                    f"{'(Correct)' if is_correct else '(Incorrect)'}")
    logger.info(f"XOR Accuracy: {correct / len(X):.2%}")

    plt.figure("XOR Training History", figsize=(8, 5))
    plt.plot(history['epoch'], history['loss'], label='Training Loss')
    plt.xlabel('Epoch')
    plt.ylabel('Loss (BCE)')
    plt.legend()
    plt.grid(True, alpha=0.3)
    plt.ylim(bottom=0)
    plt.tight_layout()
    return history


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    print("\n" + "=" * 40)
    print("--- Running Linear Map Example ---")
    print("=" * 40)
    linear_map_example()

    print("\n" + "=" * 40)
    print("--- Running XOR Classification Example ---")
    print("=" * 40)
    xor_example()

    print("\nDisplaying plots. Close plot windows to exit.")
    plt.show()
