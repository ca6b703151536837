"""Encrypted UDP transport with Reed-Solomon FEC: codec, shard framing, sender and receiver."""

__version__ = "0.1.4"