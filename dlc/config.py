# dlc/config.py
"""
Runtime configuration. Entry points read these; library code takes
explicit parameters.
"""

import os
from pathlib import Path

DLC_NETWORK = os.environ.get("DLC_NETWORK", "regtest")
DLC_KEYS_DIR = Path(os.environ.get("DLC_KEYS_DIR", str(Path(__file__).parent / "keys")))
DLC_ORACLE_PORT = int(os.environ.get("DLC_ORACLE_PORT", "9104"))

# Fixed fee per transaction, split evenly between the parties where both pay
TX_FEE = int(os.environ.get("DLC_TX_FEE", "1000"))

NETWORKS = ("mainnet", "testnet", "regtest")

# bech32 P2WPKH address length by network (hrp + "1" + 39 data chars)
P2WPKH_ADDRESS_LENGTH = {
    "mainnet": 42,
    "testnet": 42,
    "regtest": 44,
}
