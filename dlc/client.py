# dlc/client.py
"""
Client for a remote DLC oracle.

Fetches the oracle's announcements and attestations and verifies each
attestation against its announcement before handing it out. Can stand in
for a local Oracle as the oracle reference of a Proposal.

No retries, caching, or discovery.
"""

from typing import Optional

import httpx

from dlc.errors import InvalidAttestationError, UnknownEventError
from dlc.oracle import Announcement, Attestation, verify_attestation

TIMEOUT = 5


class OracleClient:
    def __init__(self, base_url: str, http: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.http = http or httpx.Client(timeout=TIMEOUT)

    def _get(self, path: str) -> httpx.Response:
        resp = self.http.get(f"{self.base_url}{path}")
        if resp.status_code == 404:
            raise UnknownEventError(resp.json().get("detail", path))
        return resp

    def pubkey(self) -> bytes:
        resp = self._get("/dlc/oracle/pubkey")
        resp.raise_for_status()
        return bytes.fromhex(resp.json()["oracle_pubkey"])

    def announcement(self, event_id: int) -> Announcement:
        resp = self._get(f"/dlc/oracle/announcements/{event_id}")
        resp.raise_for_status()
        return Announcement.from_dict(resp.json())

    def attestation(self, event_id: int) -> Optional[Attestation]:
        """Verified attestation, or None while the event is still pending."""
        resp = self._get(f"/dlc/oracle/attestations/{event_id}")
        if resp.status_code == 425:
            return None
        resp.raise_for_status()
        att = Attestation.from_dict(resp.json())
        if not verify_attestation(self.announcement(event_id), att):
            raise InvalidAttestationError(f"Attestation for event {event_id} does not verify")
        return att
