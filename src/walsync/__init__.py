"""walsync -- resumable uploads to the Walrus decentralized blob store."""

__version__ = "0.1.0"
