# dlc/transactions.py
"""
Transaction graph for one contract:

    funding  ──► CET(mine, i)   for each outcome i
             ──► CET(other, i)  for each outcome i
             ──► refund         (nLockTime = refund_locktime)

Both parties build this graph independently from the same terms and must
arrive at identical txids, since every signature commits to the whole
transaction. Everything order-sensitive is therefore sorted by a key that
does not depend on which party is building.
"""

import logging
from typing import List, NamedTuple

from bitcoinutils.constants import SIGHASH_ALL, TYPE_ABSOLUTE_TIMELOCK
from bitcoinutils.script import Script
from bitcoinutils.transactions import (
    Locktime,
    Sequence,
    Transaction,
    TxInput,
    TxOutput,
    TxWitnessInput,
)
from coincurve import PrivateKey, PublicKey

from dlc.config import TX_FEE
from dlc.oracle import Announcement, anticipated_point
from dlc.scripts import (
    cltv_script,
    multisig_script,
    p2wpkh_script,
    p2wsh_script,
    sorted_pubkeys,
)
from dlc.terms import ContractTerms, Utxo

log = logging.getLogger("dlc.transactions")

FUNDING_VOUT = 0
LOCKED_VOUT = 0


class FundingInput(NamedTuple):
    utxo: Utxo
    mine: bool


class OutcomeBranch(NamedTuple):
    """One CET plus the script guarding its locked output."""
    tx: Transaction
    script: Script
    locked_value: int
    locktime: int


class ContractTransactions:
    """Unsigned transaction graph plus the context needed to sign it."""

    def __init__(self, funding_script, funding_value, funding_tx, funding_inputs,
                 my_cets, other_cets, refund_tx):
        self.funding_script = funding_script
        self.funding_value = funding_value
        self.funding_tx = funding_tx
        self.funding_txid = funding_tx.get_txid()
        self.funding_inputs = funding_inputs
        self.my_cets = my_cets
        self.other_cets = other_cets
        self.refund_tx = refund_tx

    @property
    def cet_txids(self) -> List[str]:
        return [b.tx.get_txid() for b in self.my_cets] + [b.tx.get_txid() for b in self.other_cets]

    @property
    def refund_txid(self) -> str:
        return self.refund_tx.get_txid()

    def txids(self) -> List[str]:
        return [self.funding_txid] + self.cet_txids + [self.refund_txid]


# === Signing primitives ===

def segwit_digest(tx: Transaction, index: int, script: Script, amount: int) -> bytes:
    return tx.get_transaction_segwit_digest(index, script, amount, SIGHASH_ALL)


def sign_digest(key: PrivateKey, digest: bytes) -> bytes:
    """DER signature (low-S, RFC6979) with the SIGHASH_ALL byte appended."""
    return key.sign(digest, hasher=None) + bytes([SIGHASH_ALL])


def verify_signature(pubkey: bytes, signature: bytes, digest: bytes) -> bool:
    if not signature or signature[-1] != SIGHASH_ALL:
        return False
    try:
        return PublicKey(pubkey).verify(signature[:-1], digest, hasher=None)
    except ValueError:
        return False


def multisig_slot(funding_script_keys, pubkey: bytes) -> int:
    """Witness stack position of `pubkey`'s signature: [dummy, sig_k1, sig_k2, script]."""
    return 1 + list(funding_script_keys).index(pubkey)


def new_transaction(inputs, outputs, locktime=0) -> Transaction:
    tx = Transaction(inputs, outputs, locktime=Locktime(locktime).for_transaction(), has_segwit=True)
    tx.witnesses = [TxWitnessInput([]) for _ in inputs]
    return tx


def timelocked_input(txid: str, vout: int, locktime: int) -> TxInput:
    """Input whose sequence lets the transaction's nLockTime take effect."""
    seq = Sequence(TYPE_ABSOLUTE_TIMELOCK, locktime).for_input_sequence()
    return TxInput(txid, vout, sequence=seq)


# === Builders ===

def _sorted_outputs(pairs, network):
    """(address, amount) pairs ordered by address, then amount."""
    return [TxOutput(amount, p2wpkh_script(addr, network)) for addr, amount in sorted(pairs)]


def build_funding(me: ContractTerms, other: ContractTerms, network: str, fee: int = TX_FEE):
    funding_script = multisig_script(me.funding_pubkey, other.funding_pubkey)
    funding_value = me.fund_amount + other.fund_amount

    funding_inputs = sorted(
        [FundingInput(u, True) for u in me.utxos] + [FundingInput(u, False) for u in other.utxos],
        key=lambda fi: (fi.utxo.txid, fi.utxo.vout),
    )
    inputs = [TxInput(fi.utxo.txid, fi.utxo.vout) for fi in funding_inputs]
    outputs = [TxOutput(funding_value, p2wsh_script(funding_script))]
    outputs += _sorted_outputs(
        [(me.change_addr, me.change_amount - fee // 2),
         (other.change_addr, other.change_amount - fee // 2)],
        network,
    )
    return funding_script, funding_value, new_transaction(inputs, outputs), funding_inputs


def _build_cet(funding_txid, funding_script, owner, counterparty, index, point, network):
    tweaked = PublicKey.combine_keys([PublicKey(owner.sweep_pubkey), point]).format()
    script = cltv_script(owner.cltv_locktime, counterparty.sweep_pubkey, tweaked)
    locked_value = owner.payouts[index]
    outputs = [
        TxOutput(locked_value, p2wsh_script(script)),
        TxOutput(counterparty.payouts[index], p2wpkh_script(counterparty.final_addr, network)),
    ]
    tx = new_transaction([TxInput(funding_txid, FUNDING_VOUT)], outputs)
    tx.witnesses[0] = TxWitnessInput(["", "", "", funding_script.to_hex()])
    return OutcomeBranch(tx, script, locked_value, owner.cltv_locktime)


def build_cets(funding_txid, funding_script, me, other, announcement, network):
    my_cets, other_cets = [], []
    for i, message in enumerate(me.messages):
        point = anticipated_point(announcement, message)
        my_cets.append(_build_cet(funding_txid, funding_script, me, other, i, point, network))
        other_cets.append(_build_cet(funding_txid, funding_script, other, me, i, point, network))
    return my_cets, other_cets


def build_refund(funding_txid, funding_script, me, other, network, fee: int = TX_FEE):
    locktime = me.refund_locktime
    outputs = _sorted_outputs(
        [(me.final_addr, me.fund_amount - fee // 2),
         (other.final_addr, other.fund_amount - fee // 2)],
        network,
    )
    tx = new_transaction([timelocked_input(funding_txid, FUNDING_VOUT, locktime)], outputs, locktime)
    tx.witnesses[0] = TxWitnessInput(["", "", "", funding_script.to_hex()])
    return tx


def build_transactions(me: ContractTerms, other: ContractTerms, announcement: Announcement,
                       network: str, fee: int = TX_FEE) -> ContractTransactions:
    """Funding, then one CET pair per outcome, then refund. Terms must already be validated."""
    funding_script, funding_value, funding_tx, funding_inputs = build_funding(me, other, network, fee)
    funding_txid = funding_tx.get_txid()
    log.info(f"Funding tx {funding_txid}: {len(funding_inputs)} inputs, value {funding_value}")

    my_cets, other_cets = build_cets(funding_txid, funding_script, me, other, announcement, network)
    refund_tx = build_refund(funding_txid, funding_script, me, other, network, fee)

    txs = ContractTransactions(
        funding_script, funding_value, funding_tx, funding_inputs, my_cets, other_cets, refund_tx,
    )
    log.info(f"Built {2 * len(my_cets)} CETs and refund tx {txs.refund_txid}")
    return txs


def funding_script_keys(me: ContractTerms, other: ContractTerms):
    return sorted_pubkeys(me.funding_pubkey, other.funding_pubkey)
