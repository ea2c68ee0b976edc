# MIT License
# Copyright (c) 2025 Hashborn

import os
from typing import Dict, Optional

# Well-known program ids
COUNTER_PROGRAM_ID = "49NcALUBrB68LN1QpgfHB4G4TP6UJuyb7EG9QuwxcTVy"
DELEGATION_PROGRAM_ID = "DELeGGvXpWV2fqJUhqcF5ZSYMS4JTLjteaAMARRSaeSh"
MAGIC_PROGRAM_ID = "Magic11111111111111111111111111111111111111"
MAGIC_CONTEXT_ID = "MagicContext1111111111111111111111111111111"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
SESSION_KEYS_PROGRAM_ID = "KeyspM2ssCJbqUhQ4k7sveSiY4WjnYsrXkC8oDbwde5"

# Validator identity of a locally running rollup node
LOCAL_ROLLUP_VALIDATOR = "mAGicPQYBMvcYveUZA5F5UNNwyHvfYh5xkLS2Fr1mev"

# Commitment levels in increasing order of finality
COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")

class ClusterConfig:
    def __init__(self,
                 name: str,
                 base_rpc_url: str,
                 base_ws_url: str,
                 rollup_rpc_url: str,
                 rollup_ws_url: str,
                 commitment: str = "confirmed",
                 # Confirmation polling
                 confirm_timeout_sec: float = 30.0,
                 confirm_poll_interval_sec: float = 0.5,
                 # Ownership propagation after delegate/undelegate
                 settle_timeout_sec: float = 10.0,
                 settle_poll_interval_sec: float = 1.0,
                 # Live subscriptions
                 reconnect_delay_sec: float = 2.0,
                 max_reconnect_attempts: int = 5,
                 ws_ping_interval_sec: float = 20.0,
                 ws_ping_timeout_sec: float = 20.0,
                 # HTTP
                 request_timeout_sec: float = 15.0,
                 # Pinned rollup validator (remaining account of delegate)
                 rollup_validator: Optional[str] = None,
                 # Sessions
                 session_validity_sec: int = 3600):
        if commitment not in COMMITMENT_LEVELS:
            raise ValueError(f"Unknown commitment level: {commitment}")
        self.name = name
        self.base_rpc_url = base_rpc_url
        self.base_ws_url = base_ws_url
        self.rollup_rpc_url = rollup_rpc_url
        self.rollup_ws_url = rollup_ws_url
        self.commitment = commitment
        self.confirm_timeout_sec = confirm_timeout_sec
        self.confirm_poll_interval_sec = confirm_poll_interval_sec
        self.settle_timeout_sec = settle_timeout_sec
        self.settle_poll_interval_sec = settle_poll_interval_sec
        self.reconnect_delay_sec = reconnect_delay_sec
        self.max_reconnect_attempts = max_reconnect_attempts
        self.ws_ping_interval_sec = ws_ping_interval_sec
        self.ws_ping_timeout_sec = ws_ping_timeout_sec
        self.request_timeout_sec = request_timeout_sec
        self.rollup_validator = rollup_validator
        self.session_validity_sec = session_validity_sec

    def with_overrides(self, **overrides) -> "ClusterConfig":
        """Returns a copy with the given attributes replaced."""
        params = dict(self.__dict__)
        unknown = set(overrides) - set(params)
        if unknown:
            raise ValueError(f"Unknown cluster parameters: {sorted(unknown)}")
        params.update(overrides)
        return ClusterConfig(**params)

CLUSTERS: Dict[str, ClusterConfig] = {
    "localnet": ClusterConfig(
        name="localnet",
        base_rpc_url="http://127.0.0.1:8899",
        base_ws_url="ws://127.0.0.1:8900",
        rollup_rpc_url="http://127.0.0.1:7799",
        rollup_ws_url="ws://127.0.0.1:7800",
        settle_timeout_sec=5.0,
        settle_poll_interval_sec=0.5,
        rollup_validator=LOCAL_ROLLUP_VALIDATOR,
    ),
    "devnet": ClusterConfig(
        name="devnet",
        base_rpc_url="https://api.devnet.solana.com",
        base_ws_url="wss://api.devnet.solana.com",
        rollup_rpc_url="https://devnet.magicblock.app",
        rollup_ws_url="wss://devnet.magicblock.app",
    ),
}

def load_cluster(name: Optional[str] = None) -> ClusterConfig:
    """
    Resolves a cluster config, applying endpoint overrides from the environment.

    Args:
        name: Cluster name; falls back to $ERC_CLUSTER, then "devnet"

    Raises:
        ValueError: If the cluster name is unknown
    """
    name = name or os.environ.get("ERC_CLUSTER", "devnet")
    if name not in CLUSTERS:
        raise ValueError(f"Unknown cluster '{name}' (known: {', '.join(sorted(CLUSTERS))})")

    env_overrides = {
        "base_rpc_url": os.environ.get("ERC_BASE_RPC"),
        "base_ws_url": os.environ.get("ERC_BASE_WS"),
        "rollup_rpc_url": os.environ.get("ERC_ROLLUP_RPC"),
        "rollup_ws_url": os.environ.get("ERC_ROLLUP_WS"),
    }
    return CLUSTERS[name].with_overrides(**{k: v for k, v in env_overrides.items() if v})

# Default to devnet for now
CURRENT_CLUSTER = CLUSTERS["devnet"]
