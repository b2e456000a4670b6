# dlc/settlement.py
"""
Sweeping a CET's locked output once a CET is on chain.

  informed:  owner of the CET, holding the oracle's s(m) for the realized
             outcome, spends the ELSE branch with (sweep + s) at once.
  fallback:  counterparty spends the IF branch with its plain sweep key
             after the CLTV locktime.

Each locked output settles at most once.
"""

import logging
from typing import Dict, Tuple

from bitcoinutils.transactions import Transaction, TxInput, TxOutput, TxWitnessInput
from coincurve import PrivateKey, PublicKey

from dlc.errors import InvalidAttestationError, NotReadyError
from dlc.oracle import CURVE_ORDER, anticipated_point
from dlc.proposal import Proposal, ProposalState
from dlc.scripts import p2wpkh_script
from dlc.transactions import (
    LOCKED_VOUT,
    new_transaction,
    segwit_digest,
    sign_digest,
    timelocked_input,
)

log = logging.getLogger("dlc.settlement")

INFORMED = "informed"
FALLBACK = "fallback"

# Witness selector for OP_IF: empty is false, 0x01 is true
ELSE_BRANCH = ""
IF_BRANCH = "01"


def tweaked_private_key(sweep_key: PrivateKey, oracle_sig: int) -> PrivateKey:
    """(d + s) mod n, the key for sweep_pub + sG(m)."""
    d = int.from_bytes(sweep_key.secret, "big")
    return PrivateKey(((d + oracle_sig) % CURVE_ORDER).to_bytes(32, "big"))


def tweaked_public_key(sweep_pubkey: bytes, point: PublicKey) -> bytes:
    return PublicKey.combine_keys([PublicKey(sweep_pubkey), point]).format()


class SettlementSpender:
    """Per-outcome settle-once bookkeeping over a completed proposal."""

    def __init__(self, proposal: Proposal):
        self.proposal = proposal
        self.settled: Dict[Tuple[str, int], str] = {}

    def _branch(self, path: str, index: int):
        p = self.proposal
        if p.state is not ProposalState.COMPLETE:
            raise NotReadyError(f"proposal is {p.state.value}, CETs are not broadcastable")
        branches = p.txs.my_cets if path == INFORMED else p.txs.other_cets
        if not 0 <= index < len(branches):
            raise IndexError(f"no outcome {index}")
        if (path, index) in self.settled:
            raise NotReadyError(f"{path} output of outcome {index} already settled by {self.settled[(path, index)]}")
        return branches[index]

    def _spend(self, branch, key: PrivateKey, selector: str, locktime: int) -> Transaction:
        p = self.proposal
        cet_txid = branch.tx.get_txid()
        if locktime:
            txin = timelocked_input(cet_txid, LOCKED_VOUT, locktime)
        else:
            txin = TxInput(cet_txid, LOCKED_VOUT)
        out = TxOutput(branch.locked_value - p.fee, p2wpkh_script(p.me.final_addr, p.network))
        tx = new_transaction([txin], [out], locktime)

        digest = segwit_digest(tx, 0, branch.script, branch.locked_value)
        tx.witnesses[0] = TxWitnessInput([sign_digest(key, digest).hex(), selector, branch.script.to_hex()])
        return tx

    def spend_informed(self, index: int, oracle_sig: int, sweep_key: PrivateKey) -> Transaction:
        """Claim our CET's locked output for outcome `index`. nLockTime 0."""
        branch = self._branch(INFORMED, index)
        p = self.proposal
        if sweep_key.public_key.format() != p.me.sweep_pubkey:
            raise ValueError("sweep key does not match contract sweep pubkey")

        key = tweaked_private_key(sweep_key, oracle_sig)
        point = anticipated_point(p.announcement, p.me.messages[index])
        if key.public_key.format() != tweaked_public_key(p.me.sweep_pubkey, point):
            raise InvalidAttestationError(
                f"oracle signature does not reveal outcome {index} ({p.me.messages[index]!r})"
            )

        tx = self._spend(branch, key, ELSE_BRANCH, 0)
        self.settled[(INFORMED, index)] = tx.get_txid()
        log.info(f"Outcome {index}: informed spend {tx.get_txid()}")
        return tx

    def spend_fallback(self, index: int, sweep_key: PrivateKey) -> Transaction:
        """Claim the counterparty's CET output after its CLTV locktime."""
        branch = self._branch(FALLBACK, index)
        if sweep_key.public_key.format() != self.proposal.me.sweep_pubkey:
            raise ValueError("sweep key does not match contract sweep pubkey")

        tx = self._spend(branch, sweep_key, IF_BRANCH, branch.locktime)
        self.settled[(FALLBACK, index)] = tx.get_txid()
        log.info(f"Outcome {index}: fallback spend {tx.get_txid()} valid from locktime {branch.locktime}")
        return tx
