"""Sinks for relay send-log records."""

import logging
from pathlib import Path
from typing import Protocol

from ..models.relay import SendLogRecord

logger = logging.getLogger(__name__)


class SendLogStore(Protocol):
    """Append-only store for relay send attempts."""

    def add(self, record: SendLogRecord) -> None:
        """
        Persist one record.

        Args:
            record: The attempt to store
        """
        ...


class InMemorySendLogStore:
    """Keeps records in a list. Handy for tests and short-lived scripts."""

    def __init__(self) -> None:
        self.records: list[SendLogRecord] = []

    def add(self, record: SendLogRecord) -> None:
        self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)


class JsonLinesSendLogStore:
    """Appends one JSON document per record to a file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def add(self, record: SendLogRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(record.model_dump_json() + "\n")
        logger.debug(f"Send log record {record.id} written to {self.path}")

    def read_all(self) -> list[SendLogRecord]:
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            return [SendLogRecord.model_validate_json(line) for line in f if line.strip()]
