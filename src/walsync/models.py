"""Configuration value types for walsync."""

from __future__ import annotations

from dataclasses import dataclass

from walsync.upload.exceptions import ConfigurationError

NETWORKS: tuple[str, ...] = ("mainnet", "testnet")

DEFAULT_AGGREGATORS: dict[str, str] = {
    "mainnet": "https://aggregator.walrus-mainnet.walrus.space",
    "testnet": "https://aggregator.walrus-testnet.walrus.space",
}


@dataclass
class SyncConfig:
    """Settings for the gateway client and the local state store.

    ``aggregator_url`` defaults to the public aggregator of ``network``.
    ``max_resets`` bounds how often one upload may be restarted from
    encoding after failed node writes.
    """

    network: str = "mainnet"
    state_db: str = ".walsync/state.db"
    bridge_url: str = "http://127.0.0.1:31415"
    aggregator_url: str | None = None
    request_timeout_seconds: float = 120.0
    max_retries: int = 3
    max_resets: int = 2

    def __post_init__(self) -> None:
        if self.network not in NETWORKS:
            raise ConfigurationError(
                f"Unknown network {self.network!r}; expected one of {', '.join(NETWORKS)}"
            )
        if self.aggregator_url is None:
            self.aggregator_url = DEFAULT_AGGREGATORS[self.network]
        if self.max_resets < 0:
            raise ConfigurationError("max_resets must not be negative")
