# dlc/server.py
"""
DLC Oracle API Server
SLO DLC v1

Endpoints:
  GET /dlc/oracle/pubkey                  Oracle public key
  GET /dlc/oracle/announcements           List all announcements
  GET /dlc/oracle/announcements/{eid}     Single announcement (R point)
  GET /dlc/oracle/attestations/{eid}      Single attestation (s value)
  GET /dlc/oracle/status                  Oracle status and stats
"""

import logging
import sys

import uvicorn
from fastapi import FastAPI, HTTPException

from dlc.config import DLC_KEYS_DIR, DLC_ORACLE_PORT
from dlc.errors import UnknownEventError
from dlc.oracle import Oracle

log = logging.getLogger("dlc.server")


def create_app(oracle: Oracle) -> FastAPI:
    app = FastAPI(title="SLO DLC Oracle", version="v1")

    def _announcement(eid: int):
        try:
            return oracle.announcement(eid)
        except UnknownEventError:
            raise HTTPException(status_code=404, detail=f"Event not found: {eid}")

    @app.get("/dlc/oracle/pubkey")
    def get_pubkey():
        return {
            "oracle_pubkey": oracle.public_key.hex(),
            "key_format": "compressed",
            "key_bytes": 33,
            "curve": "secp256k1",
        }

    @app.get("/dlc/oracle/announcements")
    def list_announcements():
        announcements = []
        for ann in oracle.announcements():
            entry = ann.to_dict()
            entry["created_at"] = oracle.created_at(ann.event_id)
            entry["attested"] = oracle.attestation(ann.event_id) is not None
            announcements.append(entry)
        return {"count": len(announcements), "announcements": announcements}

    @app.get("/dlc/oracle/announcements/{eid}")
    def get_announcement(eid: int):
        ann = _announcement(eid)
        return dict(ann.to_dict(), created_at=oracle.created_at(eid))

    @app.get("/dlc/oracle/attestations/{eid}")
    def get_attestation(eid: int):
        _announcement(eid)
        att = oracle.attestation(eid)
        if att is None:
            raise HTTPException(status_code=425, detail=f"Event announced but not yet attested: {eid}")
        return att.to_dict()

    @app.get("/dlc/oracle/status")
    def get_status():
        anns = oracle.announcements()
        att_count = sum(1 for a in anns if oracle.attestation(a.event_id) is not None)
        return {
            "oracle_pubkey": oracle.public_key.hex(),
            "announcements": len(anns),
            "attestations": att_count,
            "pending": len(anns) - att_count,
            "version": "v1",
        }

    @app.get("/health")
    def health():
        return {"status": "ok", "service": "slo-dlc", "version": "v1"}

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )
    port = int(sys.argv[1]) if len(sys.argv) > 1 else DLC_ORACLE_PORT
    oracle = Oracle.load(DLC_KEYS_DIR / "oracle_sk.hex")
    log.info(f"Oracle pubkey: {oracle.public_key.hex()}")
    uvicorn.run(create_app(oracle), host="0.0.0.0", port=port)
