# dlc/oracle.py
"""
DLC Oracle - Nonce Commitment & Attestation
SLO DLC v1

Per event the oracle commits to a nonce point R = k*G. For any candidate
message m anyone can compute the anticipated point

    sG(m) = R + H(R.x || P || m) * P

and once the outcome is known the oracle reveals

    s(m) = k + H(R.x || P || m) * a  (mod n)

which satisfies s*G == sG(m). Uses full compressed public keys (33 bytes)
throughout to avoid y-coordinate ambiguity.
"""

import hashlib
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Tuple

from coincurve import PrivateKey, PublicKey

from dlc.errors import (
    InvalidAttestationError,
    OracleReplayError,
    UnknownEventError,
)

CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
MAX_EVENT_ID = 2**16 - 1

log = logging.getLogger("dlc.oracle")


class Announcement(NamedTuple):
    event_id: int
    oracle_pubkey: bytes
    r_point: bytes

    def to_dict(self):
        return {
            "event_id": self.event_id,
            "oracle_pubkey": self.oracle_pubkey.hex(),
            "r_point": self.r_point.hex(),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            int(data["event_id"]),
            bytes.fromhex(data["oracle_pubkey"]),
            bytes.fromhex(data["r_point"]),
        )


class Attestation(NamedTuple):
    event_id: int
    message: str
    s_value: int

    def to_dict(self):
        return {
            "event_id": self.event_id,
            "message": self.message,
            "s_value": self.s_value.to_bytes(32, "big").hex(),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            int(data["event_id"]),
            data["message"],
            int.from_bytes(bytes.fromhex(data["s_value"]), "big"),
        )


class _Event:
    """Commitment for one event. `nonce` is cleared after the first signature."""

    __slots__ = ("r_point", "nonce", "attestation", "created_at")

    def __init__(self, r_point: bytes, nonce: bytes):
        self.r_point = r_point
        self.nonce = nonce
        self.attestation = None
        self.created_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# === Key handling ===

def generate_key() -> Tuple[PrivateKey, bytes]:
    """Fresh oracle key pair: (a, P = a*G) with P compressed."""
    sk = PrivateKey()
    return sk, sk.public_key.format()


def load_or_create_key(path: Path) -> PrivateKey:
    """Load the oracle key from `path` or generate and persist a new one."""
    path = Path(path)
    if path.exists():
        return PrivateKey(bytes.fromhex(path.read_text().strip()))

    sk, _ = generate_key()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(sk.secret.hex())
    os.chmod(str(path), 0o600)
    return sk


# === Commitment arithmetic ===

def commitment_hash(r_point: bytes, oracle_pubkey: bytes, message: str) -> int:
    """e = SHA256(R.x || P || m) mod n"""
    preimage = r_point[1:33] + oracle_pubkey + message.encode("utf-8")
    return int.from_bytes(hashlib.sha256(preimage).digest(), "big") % CURVE_ORDER


def anticipated_point(announcement: Announcement, message: str) -> PublicKey:
    """R + e*P for a candidate message. Needs public data only."""
    P = PublicKey(announcement.oracle_pubkey)
    R = PublicKey(announcement.r_point)
    e = commitment_hash(announcement.r_point, announcement.oracle_pubkey, message)
    eP = P.multiply(e.to_bytes(32, "big"))
    return PublicKey.combine_keys([R, eP])


def verify_attestation(announcement: Announcement, attestation: Attestation) -> bool:
    if attestation.event_id != announcement.event_id:
        return False
    if not 0 < attestation.s_value < CURVE_ORDER:
        return False
    sG = PrivateKey(attestation.s_value.to_bytes(32, "big")).public_key
    expected = anticipated_point(announcement, attestation.message)
    return sG.format() == expected.format()


# === Oracle ===

class Oracle:
    """
    Owns the oracle key and the event table. Event ids are assigned in
    increasing order starting at 0.
    """

    def __init__(self, private_key: Optional[PrivateKey] = None):
        if private_key is None:
            private_key, _ = generate_key()
        self._key = private_key
        self.public_key = private_key.public_key.format()
        self._events: Dict[int, _Event] = {}

    @classmethod
    def load(cls, path: Path) -> "Oracle":
        return cls(load_or_create_key(path))

    def new_event(self) -> int:
        eid = len(self._events)
        if eid > MAX_EVENT_ID:
            raise OverflowError("event id space exhausted")
        k = PrivateKey()
        self._events[eid] = _Event(k.public_key.format(), k.secret)
        log.info(f"New event {eid}: R={self._events[eid].r_point.hex()}")
        return eid

    def _event(self, event_id: int) -> _Event:
        try:
            return self._events[event_id]
        except KeyError:
            raise UnknownEventError(f"Unknown oracle event: {event_id}") from None

    def announcement(self, event_id: int) -> Announcement:
        return Announcement(event_id, self.public_key, self._event(event_id).r_point)

    def announcements(self) -> List[Announcement]:
        return [self.announcement(eid) for eid in sorted(self._events)]

    def created_at(self, event_id: int) -> str:
        return self._event(event_id).created_at

    def get_r(self, event_id: int) -> bytes:
        return self._event(event_id).r_point

    def anticipated_point(self, event_id: int, message: str) -> PublicKey:
        return anticipated_point(self.announcement(event_id), message)

    def attestation(self, event_id: int) -> Optional[Attestation]:
        return self._event(event_id).attestation

    def sign(self, event_id: int, message: str) -> int:
        """
        Reveal s(m) for the realized outcome. The nonce is consumed on first
        use; asking for a different message afterwards would leak the key.
        """
        event = self._event(event_id)
        if event.attestation is not None:
            if event.attestation.message == message:
                return event.attestation.s_value
            raise OracleReplayError(
                f"Event {event_id} already attested to {event.attestation.message!r}"
            )

        k_int = int.from_bytes(event.nonce, "big")
        a_int = int.from_bytes(self._key.secret, "big")
        e_int = commitment_hash(event.r_point, self.public_key, message)
        s_int = (k_int + e_int * a_int) % CURVE_ORDER

        attestation = Attestation(event_id, message, s_int)
        if not verify_attestation(self.announcement(event_id), attestation):
            raise InvalidAttestationError(f"Self-check failed for event {event_id}")

        event.nonce = None
        event.attestation = attestation
        log.info(f"Attested event {event_id}: {message!r}")
        return s_int
