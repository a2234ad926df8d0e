"""
training.py
~~~~~~~~~~~

Minibatch training protocol for classification networks.

The :class:`Trainer` feeds random training samples through a network,
using ``one_hot(label) - output`` as feedback, and measures accuracy on the
test split by comparing the arg-max of the first ten outputs with the
label.

:meth:`Trainer.train_program` repeats rounds of batches and keeps the
best-scoring network as a snapshot in the SQLite store. A round that does
not beat the best score is rolled back: the network is replaced wholesale
by the best snapshot.
"""

import logging
import time
from typing import Any, Callable, Dict, List, NamedTuple, Optional

import numpy as np

from layercake.fft import FFT
from layercake.layers import (
    FFT_LAYERS,
    LAYERS_BY_NAME,
    C1dxMatrixLayer,
    C1dxp2Layer,
    SparseConvolutionLayer,
)
from layercake.mnist_loader import MnistData, as_input
from layercake.model_persistence import ModelDatabase
from layercake.network import Network
from layercake.randoms import Float24Source, RandomSource

# Configure module logger
logger = logging.getLogger(__name__)

# Outputs compared against the label when testing
CLASS_COUNT = 10


class SnapshotMissingError(RuntimeError):
    """The best snapshot of a training program is no longer in the store."""


class ProgramResult(NamedTuple):
    """Outcome of a training program."""

    best_id: Optional[str]
    best_score: int
    rounds: int


def build_network(
    description: List[Dict[str, Any]],
    source: Optional[RandomSource] = None,
    fft: Optional[FFT] = None
) -> Network:
    """
    Build, connect and randomize a network from a list of layer specs.

    Args:
        description: ``[{'kind': 'matrix', 'n': 3}, ...]`` in chain order,
            kinds named as in :data:`layercake.layers.LAYERS_BY_NAME`
        source: Value source for parameters (24-bit uniform by default)
        fft: Engine shared by convolution layers

    Returns:
        Network: The connected network

    Raises:
        ValueError: If a layer spec has an unknown kind or no positive width
    """
    if not description:
        raise ValueError("A network needs at least one layer")

    net = Network()
    for index, spec in enumerate(description):
        kind = spec.get('kind')
        layer_class = LAYERS_BY_NAME.get(kind)
        if layer_class is None:
            raise ValueError(f"Unknown layer kind {kind!r} at layer {index}")
        n = spec.get('n')
        if not isinstance(n, int) or isinstance(n, bool) or n < 1:
            raise ValueError(f"Layer {index} needs a positive integer 'n'")
        kwargs = {'fft': fft} if issubclass(layer_class, FFT_LAYERS) else {}
        net.add_layer(layer_class(n, **kwargs))

    net.connect_layers()
    net.random_variables(source if source is not None else Float24Source())
    return net


def build_mnist_network(
    source: Optional[RandomSource] = None,
    fft: Optional[FFT] = None,
    image_size: int = 784
) -> Network:
    """
    Build the reference digit classifier.

    A sparse convolution over the image feeds three compressing matrix
    layers and a compression layer with one output per digit::

        784 -> 240 -> 16 -> 16 -> 10

    Args:
        source: Value source for parameters (24-bit uniform by default)
        fft: Engine for the convolution layer
        image_size: Pixels per input image

    Returns:
        Network: The connected, randomized network
    """
    net = Network()
    net.add_layer(SparseConvolutionLayer(image_size, fft=fft))
    net.add_layer(C1dxMatrixLayer(240))
    net.add_layer(C1dxMatrixLayer(16))
    net.add_layer(C1dxMatrixLayer(16))
    net.add_layer(C1dxp2Layer(CLASS_COUNT))
    net.connect_layers()
    net.random_variables(source if source is not None else Float24Source())
    logger.info(f"Built digit classifier with sizes {net.sizes}")
    return net


class Trainer:
    """
    Trains and tests one network on one dataset.

    Args:
        network: Connected network whose input width matches the images
        data: Dataset to train and test on
        seed: Seed for picking training samples
    """

    def __init__(
        self,
        network: Network,
        data: MnistData,
        seed: Optional[int] = None
    ):
        self.network = network
        self.data = data
        self.rng = np.random.default_rng(seed)

    def feedback_for(self, output: np.ndarray, label: int) -> np.ndarray:
        """``one_hot(label) - output``: the direction towards the target."""
        feedback = -output
        feedback[label] += 1.0
        return feedback

    def train_batch(self, size: int) -> None:
        """
        Train on ``size`` training samples picked at random.

        Raises:
            ValueError: If ``size`` is not positive or there is no data
        """
        if size < 1:
            raise ValueError(f"Batch size must be positive, got {size}")
        if self.data.train_size == 0:
            raise ValueError("No training data loaded")

        net = self.network
        net.zero_changes()
        for sample in self.rng.integers(0, self.data.train_size, size):
            output = net.process(as_input(self.data.train_images[sample]))
            net.evaluate(
                self.feedback_for(output, int(self.data.train_labels[sample]))
            )
        net.downscale_changes(size)
        net.adjust()

    def train_batches(
        self,
        amount: int,
        size: int,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None
    ) -> None:
        """
        Train ``amount`` batches of ``size`` samples.

        Args:
            amount: Number of batches
            size: Samples per batch
            callback: Called after every batch with progress information
            yield_func: Called between batches to let other tasks run
        """
        start_time = time.time()
        for batch in range(amount):
            self.train_batch(size)

            if callback:
                callback({
                    'batch': batch + 1,
                    'total_batches': amount,
                    'elapsed_time': time.time() - start_time
                })

            if yield_func:
                yield_func()

        logger.debug(
            f"Trained {amount} batch(es) of {size} in "
            f"{time.time() - start_time:.2f}s"
        )

    def predict(self, image: np.ndarray) -> int:
        """Arg-max over the first ten outputs for one image."""
        output = self.network.process(as_input(image))
        return int(np.argmax(output[:CLASS_COUNT]))

    def test(self) -> int:
        """
        Count the test samples the network classifies correctly.

        Returns:
            int: Number of correct predictions
        """
        score = 0
        for image, label in zip(self.data.test_images, self.data.test_labels):
            if self.predict(image) == label:
                score += 1
        logger.debug(f"Test score: {score} / {self.data.test_size}")
        return score

    def accuracy(self, score: int) -> Optional[float]:
        """Fraction of the test split that ``score`` represents."""
        if self.data.test_size == 0:
            return None
        return score / self.data.test_size

    def train_program(
        self,
        name: str,
        amount: int,
        size: int,
        database: Optional[ModelDatabase] = None,
        should_continue: Optional[Callable[[], bool]] = None,
        max_rounds: Optional[int] = None,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None
    ) -> ProgramResult:
        """
        Train in rounds, keeping the best network.

        Every round trains ``amount`` batches of ``size`` and tests. A better
        score is saved as snapshot ``"<name>#<round>-<score>"``; otherwise
        the network is replaced by the best snapshot so far. The program
        runs until ``should_continue`` returns False or ``max_rounds``
        rounds are done; it is checked after each round.

        Args:
            name: Prefix of the snapshot ids
            amount: Batches per round
            size: Samples per batch
            database: Snapshot store (``models/networks.db`` by default)
            should_continue: Polled after every round
            max_rounds: Upper bound on the number of rounds
            callback: Called after every round with the round's results
            yield_func: Called between batches to let other tasks run

        Returns:
            ProgramResult: Best snapshot id, best score and rounds run

        Raises:
            SnapshotMissingError: If the best snapshot cannot be restored
        """
        if database is None:
            database = ModelDatabase()

        best = -1
        best_id = None
        count = 0

        logger.info(
            f"Starting training program '{name}': "
            f"{amount} batch(es) of {size} per round"
        )

        while True:
            self.train_batches(amount, size, yield_func=yield_func)
            score = self.test()

            improved = score > best
            if improved:
                best = score
                best_id = f"{name}#{count}-{score}"
                database.save_network_to_db(
                    self.network, best_id,
                    trained=True, accuracy=self.accuracy(score)
                )
                logger.info(f"Round {count}: new best score {score}")
            else:
                restored = database.load_network_from_db(best_id)
                if restored is None:
                    logger.error(
                        f"Round {count}: best snapshot '{best_id}' is gone, "
                        f"stopping the program"
                    )
                    raise SnapshotMissingError(
                        f"Best snapshot '{best_id}' could not be restored"
                    )
                self.network = restored
                logger.info(
                    f"Round {count}: score {score} does not beat {best}, "
                    f"rolled back to '{best_id}'"
                )

            count += 1

            if callback:
                callback({
                    'round': count,
                    'score': score,
                    'best_score': best,
                    'best_id': best_id,
                    'improved': improved
                })

            if max_rounds is not None and count >= max_rounds:
                break
            if should_continue is not None and not should_continue():
                break

        logger.info(
            f"Training program '{name}' finished after {count} round(s), "
            f"best score {best}"
        )
        return ProgramResult(best_id, best, count)
