"""Sibyl - run programs once through a local daemon and keep track of them."""

__version__ = "0.1.0"
