"""
mnist_loader.py
~~~~~~~~~~~~~~~

Loader for image/label datasets in the big-endian IDX format used by MNIST.

A manifest file names the four dataset files, relative to the manifest's
own directory::

    train-images-idx3-ubyte train-labels-idx1-ubyte
    t10k-images-idx3-ubyte t10k-labels-idx1-ubyte

Images stay ``uint8`` in memory; :func:`as_input` converts one image to
the float vector a network expects. Malformed or missing files are logged
and yield empty arrays, never exceptions.
"""

import logging
import os
from typing import NamedTuple, Optional, Tuple

import numpy as np

# Configure module logger
logger = logging.getLogger(__name__)

# Two big-endian int32: a magic number (ignored) and the item count
HEADER_DTYPE = np.dtype('>i4')
HEADER_SIZE = 2 * HEADER_DTYPE.itemsize
IMAGE_HEADER_SIZE = 4 * HEADER_DTYPE.itemsize


class MnistData(NamedTuple):
    """Train and test splits of a labelled image dataset."""

    train_images: np.ndarray
    train_labels: np.ndarray
    test_images: np.ndarray
    test_labels: np.ndarray
    image_shape: Tuple[int, int] = (0, 0)

    @property
    def train_size(self) -> int:
        return len(self.train_labels)

    @property
    def test_size(self) -> int:
        return len(self.test_labels)

    @property
    def image_size(self) -> int:
        return self.image_shape[0] * self.image_shape[1]


def _empty_images() -> np.ndarray:
    return np.zeros((0, 0), dtype=np.uint8)


def _empty_labels() -> np.ndarray:
    return np.zeros(0, dtype=np.int64)


def empty_data() -> MnistData:
    """Dataset without any samples."""
    return MnistData(_empty_images(), _empty_labels(),
                     _empty_images(), _empty_labels())


def _read_bytes(path: str) -> Optional[bytes]:
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        logger.error(f"Could not read dataset file '{path}': {e}")
        return None


def read_idx_images(path: str) -> Tuple[np.ndarray, Tuple[int, int]]:
    """
    Read an IDX image file.

    Args:
        path: Path to the image file

    Returns:
        Tuple of a ``(count, rows*cols)`` uint8 array and ``(rows, cols)``.
        An unreadable file gives an empty array and ``(0, 0)``; a file
        shorter than its header promises keeps only the complete images.
    """
    raw = _read_bytes(path)
    if raw is None:
        return _empty_images(), (0, 0)
    if len(raw) < IMAGE_HEADER_SIZE:
        logger.error(f"Image file '{path}' is too short for its header")
        return _empty_images(), (0, 0)

    _, count, rows, cols = np.frombuffer(raw, dtype=HEADER_DTYPE, count=4)
    count, rows, cols = int(count), int(rows), int(cols)
    if count < 0 or rows < 1 or cols < 1:
        logger.error(
            f"Image file '{path}' has an invalid header: "
            f"count={count}, rows={rows}, cols={cols}"
        )
        return _empty_images(), (0, 0)

    image_size = rows * cols
    available = (len(raw) - IMAGE_HEADER_SIZE) // image_size
    if available < count:
        logger.warning(
            f"Image file '{path}' holds {available} of {count} images"
        )
        count = available

    if count == 0:
        return np.zeros((0, image_size), dtype=np.uint8), (rows, cols)

    pixels = np.frombuffer(
        raw, dtype=np.uint8, count=count * image_size,
        offset=IMAGE_HEADER_SIZE
    )
    logger.debug(f"Read {count} images of {rows}x{cols} from '{path}'")
    return pixels.reshape(count, image_size).copy(), (rows, cols)


def read_idx_labels(path: str) -> np.ndarray:
    """
    Read an IDX label file.

    Args:
        path: Path to the label file

    Returns:
        np.ndarray: int64 labels, empty if the file cannot be read
    """
    raw = _read_bytes(path)
    if raw is None:
        return _empty_labels()
    if len(raw) < HEADER_SIZE:
        logger.error(f"Label file '{path}' is too short for its header")
        return _empty_labels()

    count = int(np.frombuffer(raw, dtype=HEADER_DTYPE, count=2)[1])
    if count < 0:
        logger.error(f"Label file '{path}' has a negative item count")
        return _empty_labels()

    available = len(raw) - HEADER_SIZE
    if available < count:
        logger.warning(f"Label file '{path}' holds {available} of {count} labels")
        count = available

    if count == 0:
        return _empty_labels()

    labels = np.frombuffer(raw, dtype=np.uint8, count=count, offset=HEADER_SIZE)
    logger.debug(f"Read {count} labels from '{path}'")
    return labels.astype(np.int64)


def _paired(
    images: np.ndarray,
    labels: np.ndarray,
    name: str
) -> Tuple[np.ndarray, np.ndarray]:
    """Truncate images and labels to a common length."""
    if len(images) != len(labels):
        size = min(len(images), len(labels))
        logger.warning(
            f"{name} split has {len(images)} images and {len(labels)} "
            f"labels, keeping {size}"
        )
        return images[:size], labels[:size]
    return images, labels


def load_manifest(path: str) -> MnistData:
    """
    Load the dataset named by a manifest file.

    Args:
        path: Path to the manifest

    Returns:
        MnistData: The dataset, empty where files are missing or malformed

    Example:
        >>> data = load_manifest('data/MNIST/input_files')
        >>> data.train_size, data.image_shape
        (60000, (28, 28))
    """
    try:
        with open(path) as f:
            names = f.read().split()
    except OSError as e:
        logger.error(f"Could not read dataset manifest '{path}': {e}")
        return empty_data()

    if len(names) < 4:
        logger.error(
            f"Dataset manifest '{path}' lists {len(names)} file(s), expected 4"
        )
        return empty_data()

    directory = os.path.dirname(path)
    files = [os.path.join(directory, name) for name in names[:4]]

    train_images, train_shape = read_idx_images(files[0])
    train_labels = read_idx_labels(files[1])
    test_images, test_shape = read_idx_images(files[2])
    test_labels = read_idx_labels(files[3])

    train_images, train_labels = _paired(train_images, train_labels, 'Train')
    test_images, test_labels = _paired(test_images, test_labels, 'Test')

    if train_shape != (0, 0) and test_shape != (0, 0) and train_shape != test_shape:
        logger.warning(
            f"Train images are {train_shape}, test images are {test_shape}"
        )

    data = MnistData(
        train_images, train_labels, test_images, test_labels,
        train_shape if train_shape != (0, 0) else test_shape
    )
    logger.info(
        f"Data loaded: {data.train_size} training, {data.test_size} test, "
        f"image shape {data.image_shape}"
    )
    return data


def as_input(image: np.ndarray) -> np.ndarray:
    """Raw pixel intensities (0-255) as a float input vector."""
    return image.astype(float)
