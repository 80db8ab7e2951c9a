"""File-based JSON storage for reviewers and their device credentials.

Stands in for the identity collaborator: it maps an opaque device credential
to a :class:`~modqueue.auth.models.Session`.  Data lives under
``~/.modqueue/auth/`` unless another directory is given.
"""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from modqueue.auth.models import Reviewer, Role, Session

logger = logging.getLogger(__name__)


class ReviewerStore:
    """File-based storage for reviewers and device credentials.

    Storage path: ``~/.modqueue/auth/`` with:
    - ``reviewers.json`` -- list of reviewer dicts
    - ``devices.json`` -- list of device credential dicts (hashed)
    """

    def __init__(self, base_dir: Optional[str | Path] = None) -> None:
        if base_dir is None:
            self._base = Path.home() / ".modqueue" / "auth"
        else:
            self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._reviewers_path = self._base / "reviewers.json"
        self._devices_path = self._base / "devices.json"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_json(self, path: Path) -> list[dict]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text())
            return data if isinstance(data, list) else []
        except (json.JSONDecodeError, OSError):
            logger.warning("Unreadable auth file %s; treating as empty", path)
            return []

    def _write_json(self, path: Path, data: list[dict]) -> None:
        path.write_text(json.dumps(data, indent=2, default=str))

    @staticmethod
    def _hash_credential(raw: str) -> str:
        return hashlib.sha256(raw.encode()).hexdigest()

    @staticmethod
    def _reviewer_from_dict(d: dict) -> Reviewer:
        role_val = d.get("role", "viewer")
        try:
            role = Role(role_val)
        except ValueError:
            role = Role.viewer
        return Reviewer(
            id=d["id"],
            handle=d.get("handle", ""),
            role=role,
            created_at=d.get("created_at", ""),
        )

    @staticmethod
    def _reviewer_to_dict(r: Reviewer) -> dict:
        return {
            "id": r.id,
            "handle": r.handle,
            "role": r.role.value,
            "created_at": r.created_at,
        }

    # ------------------------------------------------------------------
    # Reviewers
    # ------------------------------------------------------------------

    def add_reviewer(self, reviewer: Reviewer) -> Reviewer:
        reviewers = [d for d in self._read_json(self._reviewers_path) if d["id"] != reviewer.id]
        reviewers.append(self._reviewer_to_dict(reviewer))
        self._write_json(self._reviewers_path, reviewers)
        return reviewer

    def get_reviewer(self, reviewer_id: str) -> Optional[Reviewer]:
        for d in self._read_json(self._reviewers_path):
            if d["id"] == reviewer_id:
                return self._reviewer_from_dict(d)
        return None

    def list_reviewers(self) -> list[Reviewer]:
        return [self._reviewer_from_dict(d) for d in self._read_json(self._reviewers_path)]

    def update_role(self, reviewer_id: str, role: Role) -> Optional[Reviewer]:
        reviewers = self._read_json(self._reviewers_path)
        for d in reviewers:
            if d["id"] == reviewer_id:
                d["role"] = role.value
                self._write_json(self._reviewers_path, reviewers)
                return self._reviewer_from_dict(d)
        return None

    # ------------------------------------------------------------------
    # Device credentials
    # ------------------------------------------------------------------

    def register_device(self, reviewer_id: str) -> str:
        """Issue a new device credential for a reviewer. Returns the raw value."""
        raw = f"dev_{secrets.token_urlsafe(24)}"
        devices = self._read_json(self._devices_path)
        devices.append({
            "reviewer_id": reviewer_id,
            "credential_hash": self._hash_credential(raw),
            "created_at": datetime.now(timezone.utc).isoformat(),
            "last_used": "",
        })
        self._write_json(self._devices_path, devices)
        return raw

    def revoke_device(self, raw: str) -> bool:
        credential_hash = self._hash_credential(raw)
        devices = self._read_json(self._devices_path)
        kept = [d for d in devices if d["credential_hash"] != credential_hash]
        if len(kept) < len(devices):
            self._write_json(self._devices_path, kept)
            return True
        return False

    def authenticate(self, raw: Optional[str]) -> Optional[Session]:
        """Resolve a raw device credential to a session, or None."""
        if not raw:
            return None
        credential_hash = self._hash_credential(raw)
        devices = self._read_json(self._devices_path)
        for d in devices:
            if d["credential_hash"] == credential_hash:
                reviewer = self.get_reviewer(d["reviewer_id"])
                if reviewer is None:
                    return None
                d["last_used"] = datetime.now(timezone.utc).isoformat()
                self._write_json(self._devices_path, devices)
                return Session(reviewer_id=reviewer.id, role=reviewer.role, device_id=raw)
        return None
