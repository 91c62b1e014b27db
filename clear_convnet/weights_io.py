"""Plain-text interchange format for layer weights and biases.

A block looks like::

    #Kernels
    4	3	3
    0.1	0.2	0.3	
    ...

The first line is a tag (``#Weights``, ``#Kernels`` or ``#Biases``), the
second holds one to three tab-separated dimensions, and the values follow
tab-separated in row-major order with one line per row. Three-dimensional
blocks end every depth slice with a blank line.
"""

import numpy as np
from typing import Iterable, List, Optional
import logging

from .tensor import ArrayLike

BLOCK_TAGS = ("#Weights", "#Kernels", "#Biases")


class WeightFormatError(ValueError):
    """Raised when a weight or bias block cannot be parsed."""


def _format_row(row: Iterable[float]) -> str:
    # repr() keeps every digit so values survive a round trip exactly
    return "".join(f"{float(v)!r}\t" for v in row)


def format_block(tag: str, values: ArrayLike) -> str:
    """Renders a 1-D, 2-D or 3-D array as a text block.

    Args:
        tag: One of ``#Weights``, ``#Kernels`` or ``#Biases``.
        values: The array to write; its shape becomes the dimension line.

    Returns:
        The block text, ending with a newline.

    Raises:
        WeightFormatError: If the tag is unknown or the array has more than three dimensions.
    """
    if tag not in BLOCK_TAGS:
        raise WeightFormatError(f"Unknown block tag '{tag}'. Valid tags: {list(BLOCK_TAGS)}")
    values = np.asarray(values, dtype=float)
    if values.ndim == 0 or values.ndim > 3:
        raise WeightFormatError(f"Cannot write a {values.ndim}-dimensional array as a {tag} block")

    lines = [tag, "\t".join(str(d) for d in values.shape)]
    if values.ndim == 1:
        lines.append(_format_row(values))
    elif values.ndim == 2:
        lines.extend(_format_row(row) for row in values)
    else:
        for depth_slice in values:
            lines.extend(_format_row(row) for row in depth_slice)
            lines.append("")
    return "\n".join(lines) + "\n"


def parse_block(text: str, expected_tag: Optional[str] = None) -> np.ndarray:
    """Parses a block produced by ``format_block``.

    Args:
        text: Block text.
        expected_tag: If given, the block's tag must match it.

    Returns:
        A flat float array in the order the values were written.

    Raises:
        WeightFormatError: On an unknown or unexpected tag, a malformed dimension
                           line, or a value count that disagrees with the dimensions.
    """
    lines = text.strip("\n").split("\n")
    if len(lines) < 2:
        raise WeightFormatError("Block needs a tag line and a dimension line")

    tag = lines[0].strip()
    if tag not in BLOCK_TAGS:
        raise WeightFormatError(f"Unknown block tag '{tag}'. Valid tags: {list(BLOCK_TAGS)}")
    if expected_tag is not None and tag != expected_tag:
        raise WeightFormatError(f"Expected a {expected_tag} block, found {tag}")

    try:
        dims: List[int] = [int(d) for d in lines[1].split()]
    except ValueError as e:
        raise WeightFormatError(f"Malformed dimension line: {lines[1]!r}") from e
    if not 1 <= len(dims) <= 3:
        raise WeightFormatError(f"Expected 1 to 3 dimensions, got {len(dims)}")

    try:
        values = np.array([float(token) for line in lines[2:] for token in line.split()])
    except ValueError as e:
        raise WeightFormatError(f"Non-numeric value in {tag} block") from e

    expected = int(np.prod(dims))
    if values.size != expected:
        raise WeightFormatError(
            f"{tag} block declares dimensions {dims} ({expected} values) but holds {values.size}"
        )
    logging.debug(f"Parsed {tag} block with dimensions {dims}")
    return values


def write_layer_weights(layer, path: str) -> bool:
    """Writes a layer's weight block to ``path``. Returns False if the layer has no weights."""
    block = layer.weight_block()
    if block is None:
        return False
    with open(path, "w") as f:
        f.write(format_block(*block))
    logging.info(f"Weights of layer '{layer.name}' written to {path}")
    return True


def write_layer_biases(layer, path: str) -> bool:
    """Writes a layer's bias block to ``path``. Returns False if the layer has no biases."""
    block = layer.bias_block()
    if block is None:
        return False
    with open(path, "w") as f:
        f.write(format_block(*block))
    logging.info(f"Biases of layer '{layer.name}' written to {path}")
    return True


def load_values(path: str, expected_tag: Optional[str] = None) -> np.ndarray:
    """Reads a weight or bias file back into a flat vector.

    The result can be passed to ``set_weights``/``set_biases`` or to a layer
    constructor's ``weights``/``kernels``/``biases`` argument.
    """
    with open(path) as f:
        return parse_block(f.read(), expected_tag)
