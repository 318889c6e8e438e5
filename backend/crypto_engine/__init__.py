from .base import CryptoTransform
from .smime import SMimeTransform

__all__ = [
    "CryptoTransform",
    "SMimeTransform",
]
