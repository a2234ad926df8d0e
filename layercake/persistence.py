"""
persistence.py
~~~~~~~~~~~~~~

Plain-text network files and the configuration side file.

Network file::

    <networkId> <layerCount>
    <kindId> <kindId>
    <n> <m> <zero> [<one>]
    <configCount>
    <label> <value>
    ...
    <parameter rows>
    ...

Config side file::

    CONFIG <networkId> <layerCount>
    Layer0 <kindId> <configCount>
    <label> <value>
    ...

Reading is permissive: a missing file yields ``None``, an unknown kind id
or a truncated block stops loading and the layers read so far are kept.
"""

import logging
import os
from typing import Iterator, Optional

from layercake.fft import FFT, get_engine
from layercake.layers import FFT_LAYERS, LAYER_KINDS
from layercake.layers.base import read_config
from layercake.network import Network

# Configure module logger
logger = logging.getLogger(__name__)

CONFIG_HEADER = 'CONFIG'


def serialize_network(network: Network) -> str:
    """
    Serialize a connected network to text.

    Args:
        network: Network to serialize

    Returns:
        str: The network file contents
    """
    parts = [f"{network.network_id} {len(network.layers)}\n"]
    parts.extend(layer.serialize() for layer in network.layers)
    return "".join(parts)


def _tokens(text: str) -> Iterator[str]:
    return iter(text.split())


def deserialize_network(text: str, fft: Optional[FFT] = None) -> Network:
    """
    Rebuild a network from text.

    Loading stops at the first unrecognized kind id or malformed block;
    whatever was read up to that point is connected and returned.

    Args:
        text: Network file contents
        fft: Engine for convolution layers, the global one when left out

    Returns:
        Network: The connected (possibly partial) network
    """
    fft = fft if fft is not None else get_engine()
    tokens = _tokens(text)
    network = Network()

    try:
        network.network_id = int(next(tokens))
        count = int(next(tokens))
    except (StopIteration, ValueError):
        logger.warning("Network text has no valid header")
        return network

    for index in range(count):
        try:
            kind = int(next(tokens))
        except (StopIteration, ValueError):
            logger.warning(f"Network text ends before layer {index}")
            break

        layer_class = LAYER_KINDS.get(kind)
        if layer_class is None:
            logger.warning(
                f"Unknown layer kind {kind} at layer {index}, "
                f"stopping after {len(network.layers)} layer(s)"
            )
            break

        kwargs = {'fft': fft} if issubclass(layer_class, FFT_LAYERS) else {}
        try:
            layer = layer_class.deserialize(tokens, **kwargs)
        except (StopIteration, ValueError) as e:
            logger.warning(
                f"Malformed {layer_class.name} block at layer {index}: {e}"
            )
            break
        network.add_layer(layer)

    if network.layers:
        network.connect_layers()
    return network


def write_network_file(network: Network, path: str) -> bool:
    """
    Write a network file.

    Args:
        network: Network to save
        path: Destination file

    Returns:
        bool: True if successful, False otherwise
    """
    try:
        directory = os.path.dirname(path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory)
        with open(path, 'w') as f:
            f.write(serialize_network(network))
    except OSError as e:
        logger.error(f"Could not write network file '{path}': {e}")
        return False

    logger.info(f"Saved network with sizes {network.sizes} to '{path}'")
    return True


def read_network_file(
    path: str,
    fft: Optional[FFT] = None
) -> Optional[Network]:
    """
    Read a network file.

    Args:
        path: Source file
        fft: Engine for convolution layers

    Returns:
        The loaded network, or None if the file cannot be read
    """
    try:
        with open(path) as f:
            text = f.read()
    except OSError as e:
        logger.warning(f"Could not read network file '{path}': {e}")
        return None

    network = deserialize_network(text, fft)
    logger.info(f"Loaded network with sizes {network.sizes} from '{path}'")
    return network


def serialize_config(network: Network) -> str:
    """Render every layer's configuration as a config side file."""
    lines = [f"{CONFIG_HEADER} {network.network_id} {len(network.layers)}"]
    for index, layer in enumerate(network.layers):
        block = layer.config_lines()
        lines.append(f"Layer{index} {layer.kind} {block[0]}")
        lines.extend(block[1:])
    return "\n".join(lines) + "\n"


def apply_config(network: Network, text: str) -> int:
    """
    Apply a config side file to a network.

    Nothing is applied unless the network id and the layer count match.
    Blocks are applied in order until a kind id differs from the layer's.

    Args:
        network: Network to configure
        text: Config side file contents

    Returns:
        int: Number of layers whose configuration was applied
    """
    tokens = _tokens(text)
    try:
        header = next(tokens)
        network_id = int(next(tokens))
        count = int(next(tokens))
    except (StopIteration, ValueError):
        logger.warning("Config text has no valid header")
        return 0

    if (header != CONFIG_HEADER or network_id != network.network_id
            or count != len(network.layers)):
        logger.warning(
            f"Config is for network {network_id} with {count} layer(s), "
            f"ignoring it"
        )
        return 0

    applied = 0
    for layer in network.layers:
        try:
            next(tokens)
            kind = int(next(tokens))
            if kind != layer.kind:
                logger.warning(
                    f"Config block {applied} is for kind {kind}, "
                    f"layer is {layer.kind}; stopping"
                )
                break
            pairs = read_config(tokens)
        except (StopIteration, ValueError) as e:
            logger.warning(f"Malformed config block {applied}: {e}")
            break
        layer.load_config(pairs)
        applied += 1
    return applied


def write_config_file(network: Network, path: str = 'config.ckc') -> bool:
    """
    Write the live configuration to a side file for editing.

    Returns:
        bool: True if successful, False otherwise
    """
    try:
        with open(path, 'w') as f:
            f.write(serialize_config(network))
    except OSError as e:
        logger.error(f"Could not write config file '{path}': {e}")
        return False
    return True


def read_config_file(network: Network, path: str = 'config.ckc') -> int:
    """
    Read an edited side file back into the network.

    Returns:
        int: Number of layers configured, 0 if the file cannot be read
    """
    try:
        with open(path) as f:
            text = f.read()
    except OSError as e:
        logger.warning(f"Could not read config file '{path}': {e}")
        return 0
    return apply_config(network, text)
