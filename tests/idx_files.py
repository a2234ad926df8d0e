"""
idx_files.py
~~~~~~~~~~~~

Writers for small IDX datasets used as test fixtures.
"""

import numpy as np

from layercake.mnist_loader import HEADER_DTYPE

IMAGE_MAGIC = 0x00000803
LABEL_MAGIC = 0x00000801


def write_idx_images(path, images):
    """Write images of shape ``(count, rows, cols)`` as an IDX file."""
    images = np.asarray(images, dtype=np.uint8)
    count, rows, cols = images.shape
    header = np.array([IMAGE_MAGIC, count, rows, cols], dtype=HEADER_DTYPE)
    with open(path, 'wb') as f:
        f.write(header.tobytes())
        f.write(images.tobytes())


def write_idx_labels(path, labels):
    """Write labels as an IDX file."""
    labels = np.asarray(labels, dtype=np.uint8)
    header = np.array([LABEL_MAGIC, len(labels)], dtype=HEADER_DTYPE)
    with open(path, 'wb') as f:
        f.write(header.tobytes())
        f.write(labels.tobytes())
