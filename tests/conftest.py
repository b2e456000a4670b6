"""
Shared fixtures: two parties (Alice, Bob) funding a two-outcome contract on
regtest against one oracle event.

    Alice funds 0.5 BTC, Bob 1.5 BTC.
    Outcome "1": Alice 1.5 / Bob 0.5
    Outcome "2": Alice 0.5 / Bob 1.5
"""

import hashlib

import pytest
from coincurve import PrivateKey

from dlc.oracle import Oracle
from dlc.proposal import Proposal
from dlc.scripts import pubkey_address, pubkey_p2wpkh_script
from dlc.terms import ContractTerms, Utxo

NETWORK = "regtest"

ALICE_UTXO_TXID = "d002255a571e9dc4deeb9b4197dc7c91cc148178eb67fcfb1dca57595b762140"
BOB_UTXO_TXID = "5849465dc9971a7ee2133987733911e2088a8dece174cb8e8e6a8a9e66cdbac5"


def key(label: str) -> PrivateKey:
    return PrivateKey(hashlib.sha256(label.encode()).digest())


class Party:
    def __init__(self, name):
        self.init = key(f"{name}-init")
        self.funding = key(f"{name}-funding")
        self.sweep = key(f"{name}-sweep")
        self.address = pubkey_address(self.init.public_key.format(), NETWORK)
        self.utxo_script = pubkey_p2wpkh_script(self.init.public_key.format()).to_hex()


@pytest.fixture
def alice():
    return Party("alice")


@pytest.fixture
def bob():
    return Party("bob")


@pytest.fixture
def oracle():
    o = Oracle(key("oracle"))
    o.new_event()
    return o


def make_terms(party, fund, payouts, txid, vout, **overrides):
    fields = dict(
        fund_amount=fund,
        outcomes=(("1", payouts[0]), ("2", payouts[1])),
        oracle_event_id=0,
        funding_pubkey=party.funding.public_key.format(),
        sweep_pubkey=party.sweep.public_key.format(),
        utxos=(Utxo(txid, vout, party.utxo_script, fund + 10_000),),
        change_amount=10_000,
        change_addr=party.address,
        final_addr=party.address,
        cltv_locktime=100,
        refund_locktime=500,
    )
    fields.update(overrides)
    return ContractTerms(**fields)


@pytest.fixture
def alice_terms(alice):
    return make_terms(alice, 50_000_000, (150_000_000, 50_000_000), ALICE_UTXO_TXID, 0)


@pytest.fixture
def bob_terms(bob):
    return make_terms(bob, 150_000_000, (50_000_000, 150_000_000), BOB_UTXO_TXID, 1)


def built_proposal(me, other, oracle):
    p = Proposal(me, other, oracle, NETWORK)
    p.validate()
    p.build_transactions()
    return p


def signed_proposal(me, other, oracle, party):
    p = built_proposal(me, other, oracle)
    p.sign_funding([party.init])
    p.sign_outcome_and_refund_branches(party.funding)
    return p


@pytest.fixture
def alice_prop(alice_terms, bob_terms, oracle, alice):
    return signed_proposal(alice_terms, bob_terms, oracle, alice)


@pytest.fixture
def bob_prop(bob_terms, alice_terms, oracle, bob):
    return signed_proposal(bob_terms, alice_terms, oracle, bob)


@pytest.fixture
def exchanged(alice_prop, bob_prop):
    """Both parties after swapping accept messages (Alice's over the wire)."""
    bob_prop.include_accept_message_serialized(alice_prop.build_accept_message().serialize())
    alice_prop.include_accept_message(bob_prop.build_accept_message())
    return alice_prop, bob_prop
