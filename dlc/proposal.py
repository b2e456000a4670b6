# dlc/proposal.py
"""
DLC Proposal
SLO DLC v1

One party's view of a contract. Flow:

  1. validate()                           terms of both parties agree
  2. build_transactions()                 funding, CET pairs, refund
  3. sign_funding(keys)                   own funding inputs
     sign_outcome_and_refund_branches(k)  2-of-2 half on every CET + refund
  4. build_accept_message()               -> counterparty
  5. include_accept_message(msg)          counterparty's half -> complete

Each party runs its own Proposal; only the serialized accept message
crosses between them. Transitions only move forward.
"""

import logging
from enum import Enum
from typing import List, Sequence

from bitcoinutils.transactions import TxWitnessInput
from coincurve import PrivateKey

from dlc.accept import AcceptMessage
from dlc.config import TX_FEE
from dlc.errors import NotReadyError, SignatureCountMismatchError, TxidMismatchError
from dlc.scripts import p2wpkh_script_code, pubkey_p2wpkh_script, use_network
from dlc.terms import ContractTerms, validate
from dlc.transactions import (
    build_transactions,
    funding_script_keys,
    multisig_slot,
    segwit_digest,
    sign_digest,
    verify_signature,
)

log = logging.getLogger("dlc.proposal")


class ProposalState(Enum):
    CREATED = "created"
    VALIDATED = "validated"
    BUILT = "built"
    SIGNED = "signed"
    COMPLETE = "complete"


class Proposal:
    """
    `oracle` is anything with `announcement(event_id)`: a local Oracle or
    an OracleClient talking to a remote one.
    """

    def __init__(self, me: ContractTerms, other: ContractTerms, oracle, network: str,
                 proposal_id: int = 1, fee: int = TX_FEE):
        use_network(network)
        self.me = me
        self.other = other
        self.oracle = oracle
        self.network = network
        self.proposal_id = proposal_id
        self.fee = fee
        self.state = ProposalState.CREATED
        self.announcement = None
        self.txs = None
        self._funding_signed = False
        self._branches_signed = False

    # --- state ---

    @property
    def signable(self) -> bool:
        return self.state is not ProposalState.CREATED

    def _require(self, *states):
        if self.state not in states:
            wanted = "/".join(s.value for s in states)
            raise NotReadyError(f"proposal is {self.state.value}, needs {wanted}")

    def _advance(self, state):
        log.info(f"Proposal {self.proposal_id}: {self.state.value} -> {state.value}")
        self.state = state

    # --- derived artifacts ---

    @property
    def funding_tx(self):
        return self._built().funding_tx

    @property
    def funding_txid(self) -> str:
        return self._built().funding_txid

    @property
    def my_cets_tx(self):
        return [b.tx for b in self._built().my_cets]

    @property
    def other_cets_tx(self):
        return [b.tx for b in self._built().other_cets]

    @property
    def refund_tx(self):
        return self._built().refund_tx

    def _built(self):
        if self.txs is None:
            raise NotReadyError("transactions not built")
        return self.txs

    def _my_slot(self) -> int:
        return multisig_slot(funding_script_keys(self.me, self.other), self.me.funding_pubkey)

    def _other_slot(self) -> int:
        return multisig_slot(funding_script_keys(self.me, self.other), self.other.funding_pubkey)

    def _branch_txs(self):
        txs = self._built()
        return [b.tx for b in txs.my_cets] + [b.tx for b in txs.other_cets] + [txs.refund_tx]

    # --- 1. validate ---

    def validate(self):
        self._require(ProposalState.CREATED)
        validate(self.me, self.other, self.network, self.fee)
        self._advance(ProposalState.VALIDATED)

    # --- 2. build ---

    def build_transactions(self):
        if not self.signable:
            raise NotReadyError("terms have not been validated")
        self._require(ProposalState.VALIDATED)
        use_network(self.network)
        self.announcement = self.oracle.announcement(self.me.oracle_event_id)
        self.txs = build_transactions(self.me, self.other, self.announcement, self.network, self.fee)
        self._advance(ProposalState.BUILT)

    # --- 3. sign ---

    def _after_signing(self):
        if self._funding_signed and self._branches_signed:
            self._advance(ProposalState.SIGNED)

    def sign_funding(self, init_keys: Sequence[PrivateKey]):
        """
        init_keys[j] signs this party's j-th utxo. One key per utxo, and every key
        must match its utxo's script, or nothing is applied.
        """
        self._require(ProposalState.BUILT)
        if self._funding_signed:
            raise NotReadyError("funding inputs already signed")
        if len(init_keys) != len(self.me.utxos):
            raise SignatureCountMismatchError(
                f"{len(init_keys)} funding keys for {len(self.me.utxos)} utxos"
            )
        txs = self.txs
        tx = txs.funding_tx
        positions = {(fi.utxo.txid, fi.utxo.vout): i for i, fi in enumerate(txs.funding_inputs)}

        witnesses = {}
        for utxo, key in zip(self.me.utxos, init_keys):
            pub = key.public_key.format()
            if pubkey_p2wpkh_script(pub).to_hex() != utxo.script_pubkey:
                log.warning(f"Key does not match utxo {utxo.txid}:{utxo.vout}")
                continue
            index = positions[(utxo.txid, utxo.vout)]
            digest = segwit_digest(tx, index, p2wpkh_script_code(utxo.script_pubkey), utxo.value)
            witnesses[index] = [sign_digest(key, digest).hex(), pub.hex()]

        if len(witnesses) != len(init_keys):
            raise SignatureCountMismatchError(
                f"applied {len(witnesses)} funding signatures for {len(init_keys)} keys"
            )
        for index, stack in witnesses.items():
            tx.witnesses[index] = TxWitnessInput(stack)
        self._funding_signed = True
        self._after_signing()

    def sign_outcome_and_refund_branches(self, funding_key: PrivateKey):
        """This party's half of the 2-of-2 on every CET and the refund."""
        self._require(ProposalState.BUILT)
        if self._branches_signed:
            raise NotReadyError("outcome and refund branches already signed")
        if funding_key.public_key.format() != self.me.funding_pubkey:
            raise SignatureCountMismatchError("funding key does not match the contract funding pubkey")

        txs = self.txs
        slot = self._my_slot()
        for tx in self._branch_txs():
            digest = segwit_digest(tx, 0, txs.funding_script, txs.funding_value)
            _fill_slot(tx, slot, sign_digest(funding_key, digest).hex())
        self._branches_signed = True
        self._after_signing()

    # --- 4. accept message ---

    def build_accept_message(self) -> AcceptMessage:
        self._require(ProposalState.SIGNED, ProposalState.COMPLETE)
        txs = self.txs
        funding_sigs = []
        for index, fi in enumerate(txs.funding_inputs):
            if fi.mine:
                stack = txs.funding_tx.witnesses[index].stack
                funding_sigs.append(tuple(bytes.fromhex(item) for item in stack if item))

        slot = self._my_slot()
        cet_sigs = [
            bytes.fromhex(b.tx.witnesses[0].stack[slot]) for b in txs.my_cets + txs.other_cets
        ]
        refund_sig = bytes.fromhex(txs.refund_tx.witnesses[0].stack[slot])
        return AcceptMessage(
            proposal_id=self.proposal_id,
            funding_sigs=tuple(funding_sigs),
            cet_sigs=tuple(cet_sigs),
            refund_sig=refund_sig,
            funding_txid=txs.funding_txid,
            cet_txids=tuple(txs.cet_txids),
            refund_txid=txs.refund_txid,
        )

    # --- 5. include counterparty signatures ---

    def include_accept_message_serialized(self, data: bytes):
        self.include_accept_message(AcceptMessage.deserialize(data))

    def include_accept_message(self, msg: AcceptMessage):
        """
        Check every referenced txid and every signature against the local
        transactions first; only then write the signatures in.
        A message for a different proposal id is rejected with
        TxidMismatchError as well.
        """
        self._require(ProposalState.SIGNED)
        txs = self.txs
        n = len(txs.my_cets)

        if msg.proposal_id != self.proposal_id:
            raise TxidMismatchError(f"accept message is for proposal {msg.proposal_id}")
        if msg.funding_txid is not None and msg.funding_txid != txs.funding_txid:
            raise TxidMismatchError(f"funding txid {msg.funding_txid} != local {txs.funding_txid}")
        # Counterpart's own CETs are our "other" CETs and vice versa
        peer_view = [b.tx for b in txs.other_cets] + [b.tx for b in txs.my_cets]
        if msg.cet_txids and list(msg.cet_txids) != [tx.get_txid() for tx in peer_view]:
            raise TxidMismatchError("CET txids differ from the locally built CETs")
        if msg.refund_txid is not None and msg.refund_txid != txs.refund_txid:
            raise TxidMismatchError(f"refund txid {msg.refund_txid} != local {txs.refund_txid}")

        their_inputs = [(i, fi.utxo) for i, fi in enumerate(txs.funding_inputs) if not fi.mine]
        if len(msg.funding_sigs) != len(their_inputs):
            raise SignatureCountMismatchError(
                f"{len(msg.funding_sigs)} funding signatures for {len(their_inputs)} counterparty inputs"
            )
        if len(msg.cet_sigs) != 2 * n:
            raise SignatureCountMismatchError(f"{len(msg.cet_sigs)} CET signatures for {2 * n} CETs")

        funding_updates = self._check_funding_sigs(their_inputs, msg.funding_sigs)
        branch_updates = self._check_branch_sigs(peer_view + [txs.refund_tx],
                                                 list(msg.cet_sigs) + [msg.refund_sig])

        for index, stack in funding_updates:
            txs.funding_tx.witnesses[index] = TxWitnessInput(stack)
        slot = self._other_slot()
        for tx, sig in branch_updates:
            _fill_slot(tx, slot, sig.hex())
        log.info(f"Proposal {self.proposal_id}: included counterparty signatures")

        if self.is_complete():
            self._advance(ProposalState.COMPLETE)

    def _check_funding_sigs(self, their_inputs, funding_sigs):
        tx = self.txs.funding_tx
        updates = []
        for (index, utxo), items in zip(their_inputs, funding_sigs):
            if len(items) != 2:
                raise SignatureCountMismatchError(
                    f"funding input {index}: expected signature and pubkey, got {len(items)} items"
                )
            sig, pub = items
            if len(pub) != 33 or pubkey_p2wpkh_script(pub).to_hex() != utxo.script_pubkey:
                raise TxidMismatchError(f"funding input {index}: pubkey does not own {utxo.txid}:{utxo.vout}")
            digest = segwit_digest(tx, index, p2wpkh_script_code(utxo.script_pubkey), utxo.value)
            if not verify_signature(pub, sig, digest):
                raise TxidMismatchError(f"funding input {index}: signature is not over the local funding tx")
            updates.append((index, [sig.hex(), pub.hex()]))
        return updates

    def _check_branch_sigs(self, branch_txs, sigs):
        txs = self.txs
        updates = []
        for tx, sig in zip(branch_txs, sigs):
            digest = segwit_digest(tx, 0, txs.funding_script, txs.funding_value)
            if not verify_signature(self.other.funding_pubkey, sig, digest):
                raise TxidMismatchError(f"signature does not cover local transaction {tx.get_txid()}")
            updates.append((tx, sig))
        return updates

    def is_complete(self) -> bool:
        if self.txs is None:
            return False
        if not all(w.stack for w in self.txs.funding_tx.witnesses):
            return False
        return all(tx.witnesses[0].stack[1] and tx.witnesses[0].stack[2] for tx in self._branch_txs())

    def txids(self) -> List[str]:
        return self._built().txids()


def _fill_slot(tx, slot: int, sig_hex: str):
    stack = list(tx.witnesses[0].stack)
    stack[slot] = sig_hex
    tx.witnesses[0] = TxWitnessInput(stack)
