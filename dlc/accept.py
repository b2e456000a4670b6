# dlc/accept.py
"""
Accept message: the signatures one party contributes to the shared
transaction set, sent to the counterparty once.

Wire format:

    proposal_id        u16 LE
    funding sig count  u8
      item count       u8
        item           u8 len || bytes      (witness items: sig, pubkey)
    cet sig count      u8
      sig              u8 len || bytes
    refund sig         rest of buffer

CET signatures are ordered as the sender sees them: its own CETs for
outcomes 0..N-1, then its counterpart's CETs for outcomes 0..N-1.

The refund signature has no length prefix and so must stay the final
field. Txids travel only with in-process messages; the wire form carries
signatures alone.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dlc import wire
from dlc.errors import DecodeError

MAX_PROPOSAL_ID = 2**16 - 1


@dataclass(frozen=True)
class AcceptMessage:
    proposal_id: int
    funding_sigs: Tuple[Tuple[bytes, ...], ...]
    cet_sigs: Tuple[bytes, ...]
    refund_sig: bytes
    funding_txid: Optional[str] = None
    cet_txids: Tuple[str, ...] = field(default_factory=tuple)
    refund_txid: Optional[str] = None

    def __post_init__(self):
        if not 0 <= self.proposal_id <= MAX_PROPOSAL_ID:
            raise ValueError("proposal ID must be 16-bit")
        object.__setattr__(self, "funding_sigs", tuple(tuple(s) for s in self.funding_sigs))
        object.__setattr__(self, "cet_sigs", tuple(self.cet_sigs))
        object.__setattr__(self, "cet_txids", tuple(self.cet_txids))

    def serialize(self) -> bytes:
        buf = [wire.u16(self.proposal_id), wire.u8(len(self.funding_sigs))]
        for items in self.funding_sigs:
            buf.append(wire.u8(len(items)))
            buf += [wire.var8(item) for item in items]
        buf.append(wire.u8(len(self.cet_sigs)))
        buf += [wire.var8(sig) for sig in self.cet_sigs]
        buf.append(self.refund_sig)
        return b"".join(buf)

    @classmethod
    def deserialize(cls, data: bytes) -> "AcceptMessage":
        r = wire.Reader(data)
        proposal_id = r.u16()
        funding_sigs: List[Tuple[bytes, ...]] = []
        for _ in range(r.u8()):
            funding_sigs.append(tuple(r.var8() for _ in range(r.u8())))
        cet_sigs = [r.var8() for _ in range(r.u8())]
        refund_sig = r.rest()
        if not refund_sig:
            raise DecodeError("accept message has no refund signature")
        return cls(proposal_id, tuple(funding_sigs), tuple(cet_sigs), refund_sig)
