"""Image encoding for e-paper devices."""

from dashsnap.imaging.encoder import EncodeOptions, encode

__all__ = ["EncodeOptions", "encode"]
