"""Result stores: SQLite on the server, HTTP on the client."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db import StoredResult, get_session
from .errors import ProtocolError, ResultNotFoundError, StoreError
from .measurements.models import ResultRecord

LOGGER = logging.getLogger(__name__)


class ResultStore:
    """Persists finished runs under generated ids."""

    def save(self, record: ResultRecord) -> str:
        raise NotImplementedError

    def load(self, result_id: str) -> ResultRecord:
        raise NotImplementedError

    def close(self) -> None:
        pass


class SQLResultStore(ResultStore):
    def __init__(self, session_factory: sessionmaker):
        self.Session = session_factory

    def save(self, record: ResultRecord) -> str:
        result_id = uuid.uuid4().hex
        stamped = record.with_identity(result_id, datetime.now(timezone.utc))
        try:
            with get_session(self.Session) as session:
                session.add(
                    StoredResult(
                        id=result_id,
                        created_at=stamped.timestamp,
                        payload=json.dumps(stamped.to_dict()),
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to save result: {exc}") from exc
        LOGGER.info("Stored result %s", result_id)
        return result_id

    def load(self, result_id: str) -> ResultRecord:
        try:
            with get_session(self.Session) as session:
                row = session.get(StoredResult, result_id)
                payload = row.payload if row else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load result {result_id}: {exc}") from exc
        if payload is None:
            raise ResultNotFoundError(result_id)
        return ResultRecord.from_dict(json.loads(payload))

    def close(self) -> None:
        engine = self.Session.kw.get("bind")
        if engine is not None:
            engine.dispose()


class HttpResultStore(ResultStore):
    """Client view of the server's ``/save-result`` and ``/results/<id>`` endpoints."""

    def __init__(self, base_url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def save(self, record: ResultRecord) -> str:
        try:
            response = self.session.post(
                f"{self.base_url}/save-result", json=record.to_dict(), timeout=self.timeout
            )
            response.raise_for_status()
            result_id = response.json().get("id")
        except (requests.RequestException, ValueError) as exc:
            raise StoreError(f"Failed to save result on server: {exc}") from exc
        if not result_id:
            raise StoreError("Server did not return a result id")
        return result_id

    def load(self, result_id: str) -> ResultRecord:
        try:
            response = self.session.get(f"{self.base_url}/results/{result_id}", timeout=self.timeout)
        except requests.RequestException as exc:
            raise StoreError(f"Failed to fetch result {result_id}: {exc}") from exc
        if response.status_code == 404:
            raise ResultNotFoundError(result_id)
        if not response.ok:
            raise StoreError(f"Server returned {response.status_code} for result {result_id}")
        try:
            return ResultRecord.from_dict(response.json())
        except ValueError as exc:
            raise ProtocolError(f"Malformed result {result_id}: {exc}") from exc

    def close(self) -> None:
        self.session.close()
