"""
layercake package
~~~~~~~~~~~~~~~~~

Layer-chain neural networks trained by minibatch gradient ascent.
Contains the layer family and FFT convolution engine, the network chain,
text and SQLite persistence, IDX data loading, the training protocol,
and the API server.
"""

__version__ = "1.0.0"
