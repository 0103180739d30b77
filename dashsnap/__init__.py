"""dashsnap: scheduled dashboard screenshots for e-paper displays."""

__version__ = "0.1.0"
