"""
Tests for contract terms: field invariants, cross-party validation and the
transport encoding.
"""

import dataclasses

import pytest

from dlc.errors import DecodeError, ValidationError
from dlc import wire
from dlc.terms import ContractTerms, Outcome, Utxo, validate

from conftest import NETWORK, BOB_UTXO_TXID, make_terms


def replace(terms, **changes):
    return dataclasses.replace(terms, **changes)


class TestFieldInvariants:
    def test_outcomes_normalized(self, alice_terms):
        assert alice_terms.outcomes[0] == Outcome("1", 150_000_000)
        assert alice_terms.messages == ["1", "2"]
        assert alice_terms.payouts == [150_000_000, 50_000_000]

    def test_message_too_long(self, alice_terms):
        with pytest.raises(ValidationError):
            replace(alice_terms, outcomes=(("x" * 33, 1), ("2", 1)))

    def test_message_length_counts_utf8_bytes(self, alice_terms):
        with pytest.raises(ValidationError):
            replace(alice_terms, outcomes=(("é" * 17, 1), ("2", 1)))

    def test_event_id_must_be_16_bit(self, alice_terms):
        with pytest.raises(ValidationError):
            replace(alice_terms, oracle_event_id=2**16)

    def test_pubkey_length(self, alice_terms):
        with pytest.raises(ValidationError):
            replace(alice_terms, sweep_pubkey=b"\x02" * 32)

    def test_negative_amount(self, alice_terms):
        with pytest.raises(ValidationError):
            replace(alice_terms, change_amount=-1)

    def test_terms_are_immutable(self, alice_terms):
        with pytest.raises(dataclasses.FrozenInstanceError):
            alice_terms.fund_amount = 1


class TestValidate:
    def test_scenario_is_valid(self, alice_terms, bob_terms):
        validate(alice_terms, bob_terms, NETWORK)
        validate(bob_terms, alice_terms, NETWORK)

    def test_outcome_count_differs(self, alice_terms, bob_terms):
        bob = replace(bob_terms, outcomes=(("1", 50_000_000),))
        with pytest.raises(ValidationError, match="outcome count"):
            validate(alice_terms, bob, NETWORK)

    def test_outcome_messages_differ(self, alice_terms, bob_terms):
        bob = replace(bob_terms, outcomes=(("1", 50_000_000), ("3", 150_000_000)))
        with pytest.raises(ValidationError, match="messages"):
            validate(alice_terms, bob, NETWORK)

    def test_payouts_not_conserved(self, alice_terms, bob_terms):
        bob = replace(bob_terms, outcomes=(("1", 50_000_001), ("2", 150_000_000)))
        with pytest.raises(ValidationError, match="outcome 0"):
            validate(alice_terms, bob, NETWORK)

    def test_invalid_point(self, alice_terms, bob_terms):
        bob = replace(bob_terms, sweep_pubkey=b"\x04" + b"\x01" * 32)
        with pytest.raises(ValidationError, match="sweep_pubkey"):
            validate(alice_terms, bob, NETWORK)

    def test_point_off_curve(self, alice_terms, bob_terms):
        bob = replace(bob_terms, funding_pubkey=b"\x02" + b"\xff" * 32)
        with pytest.raises(ValidationError, match="funding_pubkey"):
            validate(alice_terms, bob, NETWORK)

    def test_shared_funding_key(self, alice_terms, bob_terms):
        bob = replace(bob_terms, funding_pubkey=alice_terms.funding_pubkey)
        with pytest.raises(ValidationError, match="same funding key"):
            validate(alice_terms, bob, NETWORK)

    def test_no_utxos(self, alice_terms, bob_terms):
        with pytest.raises(ValidationError, match="no funding utxos"):
            validate(alice_terms, replace(bob_terms, utxos=()), NETWORK)

    def test_non_p2wpkh_utxo(self, alice_terms, bob_terms):
        u = bob_terms.utxos[0]._replace(script_pubkey="76a914" + "00" * 20 + "88ac")
        with pytest.raises(ValidationError, match="P2WPKH"):
            validate(alice_terms, replace(bob_terms, utxos=(u,)), NETWORK)

    def test_change_below_half_fee(self, alice_terms, bob_terms):
        bob = replace(bob_terms, change_amount=500)
        with pytest.raises(ValidationError, match="half the fee"):
            validate(alice_terms, bob, NETWORK, fee=1000)

    def test_address_wrong_length(self, alice_terms, bob_terms):
        bob = replace(bob_terms, final_addr=bob_terms.final_addr[:-1])
        with pytest.raises(ValidationError, match="final_addr"):
            validate(alice_terms, bob, NETWORK)

    def test_address_wrong_network(self, alice_terms, bob_terms):
        with pytest.raises(ValidationError, match="change_addr"):
            validate(alice_terms, bob_terms, "testnet")

    def test_address_bad_checksum(self, alice_terms, bob_terms):
        addr = alice_terms.final_addr
        broken = addr[:-1] + ("q" if addr[-1] != "q" else "p")
        with pytest.raises(ValidationError, match="final_addr"):
            validate(replace(alice_terms, final_addr=broken), bob_terms, NETWORK)

    def test_refund_locktime_differs(self, alice_terms, bob_terms):
        bob = replace(bob_terms, refund_locktime=501)
        with pytest.raises(ValidationError, match="refund locktimes"):
            validate(alice_terms, bob, NETWORK)

    def test_event_id_differs(self, alice_terms, bob_terms):
        with pytest.raises(ValidationError, match="oracle events"):
            validate(alice_terms, replace(bob_terms, oracle_event_id=1), NETWORK)

    def test_utxo_value_mismatch(self, alice_terms, bob_terms):
        u = bob_terms.utxos[0]._replace(value=1)
        with pytest.raises(ValidationError, match="utxos total"):
            validate(alice_terms, replace(bob_terms, utxos=(u,)), NETWORK)

    def test_shared_utxo(self, alice_terms, bob_terms):
        u = bob_terms.utxos[0]._replace(txid=alice_terms.utxos[0].txid, vout=alice_terms.utxos[0].vout)
        with pytest.raises(ValidationError, match="both parties"):
            validate(alice_terms, replace(bob_terms, utxos=(u,)), NETWORK)

    def test_payout_must_exceed_fee(self, alice, bob, alice_terms):
        total = 200_000_000
        a = replace(alice_terms, outcomes=(("1", total - 500), ("2", 50_000_000)))
        b = make_terms(bob, 150_000_000, (500, 150_000_000), BOB_UTXO_TXID, 1)
        with pytest.raises(ValidationError, match="does not exceed the fee"):
            validate(a, b, NETWORK)


    def test_too_many_outcomes_for_accept_message(self, alice_terms, bob_terms):
        outcomes = [(str(i), 100_000_000) for i in range(128)]
        a = replace(alice_terms, outcomes=outcomes)
        b = replace(bob_terms, outcomes=outcomes)
        with pytest.raises(ValidationError, match="CET signatures"):
            validate(a, b, NETWORK)

    def test_largest_outcome_count_accepted(self, alice_terms, bob_terms):
        outcomes = [(str(i), 100_000_000) for i in range(127)]
        validate(replace(alice_terms, outcomes=outcomes), replace(bob_terms, outcomes=outcomes), NETWORK)


class TestTransport:
    def test_round_trip(self, alice_terms):
        assert ContractTerms.deserialize(alice_terms.serialize()) == alice_terms

    def test_layout_prefix(self, alice_terms):
        data = alice_terms.serialize()
        assert data[:6] == (50_000_000).to_bytes(6, "little")
        assert data[6:8] == (2).to_bytes(2, "little")
        assert data[8:14] == (150_000_000).to_bytes(6, "little")
        assert data[14:20] == (50_000_000).to_bytes(6, "little")
        assert data[20:24] == b"\x011\x012"
        assert data[24:26] == b"\x00\x00"
        assert data[26:59] == alice_terms.funding_pubkey
        assert data[-12:-6] == (100).to_bytes(6, "little")
        assert data[-6:] == (500).to_bytes(6, "little")

    def test_utxo_json(self, alice_terms):
        u = alice_terms.utxos[0]
        assert Utxo.from_json(u.to_json()) == u
        assert '"prevTxScript"' in u.to_json()

    def test_truncated(self, alice_terms):
        with pytest.raises(DecodeError):
            ContractTerms.deserialize(alice_terms.serialize()[:-1])

    def test_trailing_bytes(self, alice_terms):
        with pytest.raises(DecodeError):
            ContractTerms.deserialize(alice_terms.serialize() + b"\x00")

    def test_utxo_json_not_an_object(self, alice_terms):
        good = wire.var8(alice_terms.utxos[0].to_json().encode())
        data = alice_terms.serialize().replace(good, wire.var8(b"[1]"))
        with pytest.raises(DecodeError):
            ContractTerms.deserialize(data)

    def test_utxo_json_bad_field_type(self, alice_terms):
        u = alice_terms.utxos[0]
        good = wire.var8(u.to_json().encode())
        bad = u.to_json().replace(f'"vout":{u.vout}', '"vout":null').encode()
        data = alice_terms.serialize().replace(good, wire.var8(bad))
        with pytest.raises(DecodeError):
            ContractTerms.deserialize(data)

    def test_too_many_outcomes_to_encode(self, alice_terms):
        outcomes = [("", 1)] * 0x10000
        with pytest.raises(ValidationError):
            replace(alice_terms, outcomes=outcomes).serialize()
