"""DRAM controller model, page allocation, cache statistics and trace handling."""

__version__ = "0.1.0"