# dlc/scripts.py
"""
Script templates and address decoding for the contract transactions.

  funding output:  P2WSH( 2 <K1> <K2> 2 CHECKMULTISIG )      keys sorted
  CET output 0:    P2WSH( IF <lock> CLTV DROP <fallback> CHECKSIG
                          ELSE <sweep + sG(m)> CHECKSIG ENDIF )
  everything else: P2WPKH
"""

import hashlib

from bitcoinutils.constants import TYPE_ABSOLUTE_TIMELOCK
from bitcoinutils.keys import P2wpkhAddress
from bitcoinutils.keys import PublicKey as AddressKey
from bitcoinutils.script import Script
from bitcoinutils.setup import setup
from bitcoinutils.transactions import Sequence

from dlc.config import NETWORKS


def use_network(network: str):
    """Select the address network for bitcoin-utils."""
    if network not in NETWORKS:
        raise ValueError(f"Unsupported network: {network}")
    setup(network)


def p2wpkh_script(address: str, network: str) -> Script:
    use_network(network)
    return P2wpkhAddress(address=address).to_script_pub_key()


def pubkey_p2wpkh_script(pubkey: bytes) -> Script:
    return AddressKey(pubkey.hex()).get_segwit_address().to_script_pub_key()


def pubkey_address(pubkey: bytes, network: str) -> str:
    use_network(network)
    return AddressKey(pubkey.hex()).get_segwit_address().to_string()


def p2wpkh_script_code(prev_script_hex: str) -> Script:
    """Segwit v0 script code for a P2WPKH output: the equivalent P2PKH script."""
    return Script(["OP_DUP", "OP_HASH160", prev_script_hex[4:], "OP_EQUALVERIFY", "OP_CHECKSIG"])


def is_p2wpkh(prev_script_hex: str) -> bool:
    return len(prev_script_hex) == 44 and prev_script_hex.startswith("0014")


def p2wsh_script(witness_script: Script) -> Script:
    return Script(["OP_0", hashlib.sha256(witness_script.to_bytes()).hexdigest()])


def sorted_pubkeys(key_a: bytes, key_b: bytes):
    return sorted([key_a, key_b])


def multisig_script(key_a: bytes, key_b: bytes) -> Script:
    first, second = sorted_pubkeys(key_a, key_b)
    return Script(["OP_2", first.hex(), second.hex(), "OP_2", "OP_CHECKMULTISIG"])


def cltv_script(locktime: int, fallback_pubkey: bytes, tweaked_pubkey: bytes) -> Script:
    lock = Sequence(TYPE_ABSOLUTE_TIMELOCK, locktime).for_script()
    return Script([
        "OP_IF",
        lock, "OP_CHECKLOCKTIMEVERIFY", "OP_DROP",
        fallback_pubkey.hex(), "OP_CHECKSIG",
        "OP_ELSE",
        tweaked_pubkey.hex(), "OP_CHECKSIG",
        "OP_ENDIF",
    ])
