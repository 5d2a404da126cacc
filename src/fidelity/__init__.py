"""FidelityShop Discord approval bridge."""

__version__ = "1.0.0"
