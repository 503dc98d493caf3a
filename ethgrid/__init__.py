"""ETH/stablecoin grid trader."""

__version__ = "0.1.0"
