"""Client for reclaiming compressed NFTs from fractional ownership vaults."""

__version__ = "0.1.0"
