# dlc/terms.py
"""
Contract terms for one party, their cross-party validation, and the
transport encoding used while the parties negotiate.

Transport layout (all integers little-endian):

    fund_amount            u48
    outcome count          u16
    payout[i]              u48 * count
    message[i]             u8 len || utf-8 bytes, * count
    oracle_event_id        u16
    funding_pubkey         33 bytes
    sweep_pubkey           33 bytes
    utxo count             u8
    utxo[i]                u8 len || JSON text
    change_amount          u48
    change_addr            u8 len || bytes
    final_addr             u8 len || bytes
    cltv_locktime          u48
    refund_locktime        u48
"""

import json
from dataclasses import dataclass
from typing import List, NamedTuple, Tuple

from coincurve import PublicKey

from dlc import wire
from dlc.config import P2WPKH_ADDRESS_LENGTH, TX_FEE
from dlc.errors import DecodeError, ValidationError
from dlc.scripts import is_p2wpkh, p2wpkh_script

MAX_MESSAGE_BYTES = 32
MAX_EVENT_ID = 2**16 - 1
MAX_UTXOS = 0xFF
# CET signature count is a u8 in the accept message, two CETs per outcome
MAX_CET_SIGS = 0xFF


class Utxo(NamedTuple):
    txid: str
    vout: int
    script_pubkey: str
    value: int

    def to_json(self) -> str:
        return json.dumps(
            {"txid": self.txid, "vout": self.vout, "prevTxScript": self.script_pubkey, "value": self.value},
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, text: str) -> "Utxo":
        d = json.loads(text)
        if not isinstance(d, dict):
            raise ValueError("utxo must be a JSON object")
        return cls(d["txid"], int(d["vout"]), d["prevTxScript"], int(d["value"]))


class Outcome(NamedTuple):
    message: str
    payout: int


@dataclass(frozen=True)
class ContractTerms:
    fund_amount: int
    outcomes: Tuple[Outcome, ...]
    oracle_event_id: int
    funding_pubkey: bytes
    sweep_pubkey: bytes
    utxos: Tuple[Utxo, ...]
    change_amount: int
    change_addr: str
    final_addr: str
    cltv_locktime: int
    refund_locktime: int

    def __post_init__(self):
        object.__setattr__(self, "outcomes", tuple(Outcome(*o) for o in self.outcomes))
        object.__setattr__(self, "utxos", tuple(Utxo(*u) for u in self.utxos))
        object.__setattr__(self, "funding_pubkey", bytes(self.funding_pubkey))
        object.__setattr__(self, "sweep_pubkey", bytes(self.sweep_pubkey))

        for o in self.outcomes:
            if len(o.message.encode("utf-8")) > MAX_MESSAGE_BYTES:
                raise ValidationError(f"message {o.message!r} too long")
            _check_u48("payout", o.payout)
        if not 0 <= self.oracle_event_id <= MAX_EVENT_ID:
            raise ValidationError("oracle event id must be 16-bit")
        if len(self.funding_pubkey) != 33 or len(self.sweep_pubkey) != 33:
            raise ValidationError("public keys must be 33-byte compressed points")
        if len(self.utxos) > MAX_UTXOS:
            raise ValidationError(f"at most {MAX_UTXOS} funding utxos")
        for name in ("fund_amount", "change_amount", "cltv_locktime", "refund_locktime"):
            _check_u48(name, getattr(self, name))

    @property
    def messages(self) -> List[str]:
        return [o.message for o in self.outcomes]

    @property
    def payouts(self) -> List[int]:
        return [o.payout for o in self.outcomes]

    @property
    def utxo_total(self) -> int:
        return sum(u.value for u in self.utxos)

    # --- transport encoding ---

    def serialize(self) -> bytes:
        try:
            parts = [wire.u48(self.fund_amount), wire.u16(len(self.outcomes))]
            parts += [wire.u48(o.payout) for o in self.outcomes]
            parts += [wire.var8(o.message.encode("utf-8")) for o in self.outcomes]
            parts += [
                wire.u16(self.oracle_event_id),
                self.funding_pubkey,
                self.sweep_pubkey,
                wire.u8(len(self.utxos)),
            ]
            parts += [wire.var8(u.to_json().encode("utf-8")) for u in self.utxos]
            parts += [
                wire.u48(self.change_amount),
                wire.var8(self.change_addr.encode("utf-8")),
                wire.var8(self.final_addr.encode("utf-8")),
                wire.u48(self.cltv_locktime),
                wire.u48(self.refund_locktime),
            ]
        except ValueError as e:
            raise ValidationError(f"terms not encodable: {e}") from e
        return b"".join(parts)

    @classmethod
    def deserialize(cls, data: bytes) -> "ContractTerms":
        r = wire.Reader(data)
        fund_amount = r.u48()
        count = r.u16()
        payouts = [r.u48() for _ in range(count)]
        try:
            messages = [r.var8().decode("utf-8") for _ in range(count)]
            oracle_event_id = r.u16()
            funding_pubkey = r.take(33)
            sweep_pubkey = r.take(33)
            utxos = [Utxo.from_json(r.var8().decode("utf-8")) for _ in range(r.u8())]
            change_amount = r.u48()
            change_addr = r.var8().decode("utf-8")
            final_addr = r.var8().decode("utf-8")
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise DecodeError(f"malformed contract terms: {e}") from e
        cltv_locktime = r.u48()
        refund_locktime = r.u48()
        if not r.done():
            raise DecodeError(f"{len(r.data) - r.offset} trailing bytes after contract terms")

        return cls(
            fund_amount=fund_amount,
            outcomes=tuple(zip(messages, payouts)),
            oracle_event_id=oracle_event_id,
            funding_pubkey=funding_pubkey,
            sweep_pubkey=sweep_pubkey,
            utxos=tuple(utxos),
            change_amount=change_amount,
            change_addr=change_addr,
            final_addr=final_addr,
            cltv_locktime=cltv_locktime,
            refund_locktime=refund_locktime,
        )


def _check_u48(name, value):
    if not isinstance(value, int) or not 0 <= value <= wire.UINT48_MAX:
        raise ValidationError(f"{name} must be a non-negative 48-bit integer, got {value!r}")


def _check_point(label, key: bytes):
    if key[0] not in (2, 3):
        raise ValidationError(f"{label} is not a compressed point")
    try:
        PublicKey(key)
    except ValueError as e:
        raise ValidationError(f"{label} is not on secp256k1") from e


def _check_address(label, address, network):
    expected = P2WPKH_ADDRESS_LENGTH[network]
    if len(address) != expected:
        raise ValidationError(f"{label} has length {len(address)}, expected {expected} on {network}")
    try:
        p2wpkh_script(address, network)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"{label} is not a {network} P2WPKH address: {address}") from e


def validate(me: ContractTerms, other: ContractTerms, network: str, fee: int = TX_FEE):
    """
    Precondition gate for a proposal. Raises ValidationError on the first
    violated invariant; returns None when both sides agree.
    """
    # Outcomes
    if len(me.outcomes) != len(other.outcomes):
        raise ValidationError(
            f"outcome count differs: {len(me.outcomes)} vs {len(other.outcomes)}"
        )
    if not me.outcomes:
        raise ValidationError("at least one outcome is required")
    if 2 * len(me.outcomes) > MAX_CET_SIGS:
        raise ValidationError(
            f"{len(me.outcomes)} outcomes need more CET signatures than an accept message carries ({MAX_CET_SIGS})"
        )
    if me.messages != other.messages:
        raise ValidationError("outcome messages differ between parties")

    # Per-outcome payout conservation
    total = me.fund_amount + other.fund_amount
    for i, (mine, theirs) in enumerate(zip(me.payouts, other.payouts)):
        if mine + theirs != total:
            raise ValidationError(
                f"outcome {i}: payouts {mine} + {theirs} != total funding {total}"
            )

    # Keys
    for who, t in (("me", me), ("other", other)):
        _check_point(f"{who}.funding_pubkey", t.funding_pubkey)
        _check_point(f"{who}.sweep_pubkey", t.sweep_pubkey)
    if me.funding_pubkey == other.funding_pubkey:
        raise ValidationError("both parties use the same funding key")

    # Funding inputs
    for who, t in (("me", me), ("other", other)):
        if not t.utxos:
            raise ValidationError(f"{who} supplies no funding utxos")
        for u in t.utxos:
            if not is_p2wpkh(u.script_pubkey):
                raise ValidationError(f"{who} utxo {u.txid}:{u.vout} is not P2WPKH")

    # Change must cover each side's half of the funding fee
    for who, t in (("me", me), ("other", other)):
        if t.change_amount <= fee // 2:
            raise ValidationError(
                f"{who}.change_amount {t.change_amount} does not exceed half the fee ({fee // 2})"
            )
        if t.fund_amount <= fee // 2:
            raise ValidationError(f"{who}.fund_amount cannot cover half the refund fee")

    # Addresses
    for who, t in (("me", me), ("other", other)):
        _check_address(f"{who}.change_addr", t.change_addr, network)
        _check_address(f"{who}.final_addr", t.final_addr, network)

    if me.refund_locktime != other.refund_locktime:
        raise ValidationError(
            f"refund locktimes differ: {me.refund_locktime} vs {other.refund_locktime}"
        )

    if me.oracle_event_id != other.oracle_event_id:
        raise ValidationError("parties reference different oracle events")

    for who, t in (("me", me), ("other", other)):
        if t.utxo_total != t.fund_amount + t.change_amount:
            raise ValidationError(
                f"{who} utxos total {t.utxo_total} != fund {t.fund_amount} + change {t.change_amount}"
            )
    shared = {(u.txid, u.vout) for u in me.utxos} & {(u.txid, u.vout) for u in other.utxos}
    if shared:
        raise ValidationError(f"utxos claimed by both parties: {sorted(shared)}")

    for who, t in (("me", me), ("other", other)):
        for i, payout in enumerate(t.payouts):
            if payout <= fee:
                raise ValidationError(f"{who} payout for outcome {i} does not exceed the fee")
