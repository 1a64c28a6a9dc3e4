"""
Document store access.

The engine never performs I/O itself; everything it needs is fetched
through the `DataAccess` protocol defined here. `JsonDocumentStore` is the
bundled implementation, reading users, sensor records and range
configurations from a single JSON document file.

Store outages are raised as `StoreUnavailableError` and are never masked.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Dict, List, Optional, Protocol

import structlog

from .engine.models import UserRecord


logger = structlog.get_logger(__name__)

ROLE_ADMIN = "admin"
ROLE_DOCTOR = "doctor"
ROLE_PATIENT = "patient"


class StoreUnavailableError(Exception):
    """Raised when the document store cannot be read."""
    pass


class UserNotFoundError(LookupError):
    """Raised when a requested user does not exist."""
    pass


class DataAccess(Protocol):
    """What the dashboard needs from the document store."""

    async def accessible_usernames(self, identity: str) -> List[str]:
        ...

    async def get_user(self, username: str) -> UserRecord:
        ...

    async def list_users(self) -> List[UserRecord]:
        ...

    async def get_sensor_record(self, etag: Optional[str]) -> Optional[Dict[str, Any]]:
        ...

    async def get_range_configs(self, biomarker: str) -> Dict[str, Any]:
        ...


class JsonDocumentStore:
    """
    `DataAccess` over a JSON file shaped like:

        {
          "users": [{"username", "role", "patients", "personal_information",
                     "device_info", "etag"}, ...],
          "sensor_records": {"<etag>": {"data": {"data_points": [...]}}, ...},
          "range_configs": {"glucose": {"<condition>": {"ranges": {...}}}, ...}
        }

    The file is re-read on every call; nothing is cached.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.logger = logger.bind(store_path=path)

    def _load_all_raw(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            raise StoreUnavailableError(f"Document store not found: {self.path}")
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error("store_read_failed", error=str(e))
            raise StoreUnavailableError(f"Could not read document store: {e}") from e
        if not isinstance(data, dict):
            raise StoreUnavailableError("Document store root must be an object")
        return data

    async def _load(self) -> Dict[str, Any]:
        return await asyncio.to_thread(self._load_all_raw)

    @staticmethod
    def _user_documents(data: Dict[str, Any]) -> List[Dict[str, Any]]:
        users = data.get("users") or []
        return [u for u in users if isinstance(u, dict) and u.get("username")]

    async def accessible_usernames(self, identity: str) -> List[str]:
        """
        Usernames the identity may see: admins see everyone, doctors
        themselves and their listed patients, patients only themselves.
        """
        docs = self._user_documents(await self._load())
        by_name = {d["username"]: d for d in docs}
        caller = by_name.get(identity)
        if caller is None:
            return []

        role = str(caller.get("role", ROLE_PATIENT)).lower()
        if role == ROLE_ADMIN or caller.get("admin") is True:
            return sorted(by_name)
        if role == ROLE_DOCTOR or caller.get("doctor") is True:
            patients = [p for p in caller.get("patients") or [] if p in by_name]
            return sorted(set(patients) | {identity})
        return [identity]

    async def get_user(self, username: str) -> UserRecord:
        for doc in self._user_documents(await self._load()):
            if doc["username"] == username:
                return UserRecord.from_document(doc)
        raise UserNotFoundError(username)

    async def list_users(self) -> List[UserRecord]:
        return [UserRecord.from_document(d) for d in self._user_documents(await self._load())]

    async def get_sensor_record(self, etag: Optional[str]) -> Optional[Dict[str, Any]]:
        """Raw sensor record for an etag, or None when there is none."""
        if not etag:
            return None
        records = (await self._load()).get("sensor_records") or {}
        record = records.get(etag)
        return record if isinstance(record, dict) else None

    async def get_range_configs(self, biomarker: str) -> Dict[str, Any]:
        """Condition name -> stored range document for one biomarker."""
        configs = (await self._load()).get("range_configs") or {}
        biomarker_configs = configs.get(biomarker.lower()) or {}
        if not isinstance(biomarker_configs, dict):
            return {}
        conditions = biomarker_configs.get("conditions")
        if isinstance(conditions, dict):
            biomarker_configs = conditions
        return {
            name: doc for name, doc in biomarker_configs.items()
            if name != "default" and isinstance(doc, dict)
        }
