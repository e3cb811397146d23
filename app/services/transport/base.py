"""
ClearingHouseTransport abstract interface.

Everything the submitter and the reconciliation loop need from the clearing
house goes through this interface, so the loop can be driven by an
in-memory fake in tests and by the MediData proxy in production.

Failure contract: any network error, timeout or non-success reply raises
TransportError. It is always transient. Callers retry later and never
treat it as an insurer rejection.
"""

import abc
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class TransportError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class UpstreamStatus:
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    DELIVERED = "DELIVERED"
    ERROR = "ERROR"

    ALL = [PROCESSING, DONE, DELIVERED, ERROR]


@dataclass
class UploadResult:
    message_id: str
    status_code: int
    raw: dict = field(default_factory=dict)


@dataclass
class UploadStatus:
    status: Optional[str]
    error_reason: Optional[str] = None
    created: Optional[datetime] = None
    raw: dict = field(default_factory=dict)


@dataclass
class DownloadEntry:
    transmission_reference: str
    correlation_reference: Optional[str] = None
    document_reference: Optional[str] = None
    sender_gln: Optional[str] = None
    created: Optional[datetime] = None
    raw: dict = field(default_factory=dict)


@dataclass
class UpstreamNotification:
    id: str
    message: Any = None  # str, or {"de": ..., "fr": ..., "it": ...}
    severity: Optional[str] = None
    error_code: Optional[str] = None
    transmission_reference: Optional[str] = None
    created: Optional[datetime] = None
    raw: dict = field(default_factory=dict)


@dataclass
class Participant:
    gln: str
    receiver_gln: Optional[str]
    name: str
    law_types: list[int] = field(default_factory=list)
    tg_allowed: Optional[bool] = None
    raw: dict = field(default_factory=dict)


class ClearingHouseTransport(abc.ABC):
    @abc.abstractmethod
    def submit(self, document_xml: str, filename: str, info: dict) -> UploadResult:
        """Upload one invoice document; returns the upstream message id."""

    @abc.abstractmethod
    def check_status(self, message_id: str) -> UploadStatus:
        """Processing status of a previous upload."""

    @abc.abstractmethod
    def list_downloads(self) -> list[DownloadEntry]:
        """Insurer documents waiting to be fetched."""

    @abc.abstractmethod
    def fetch_download(self, ref: str) -> str:
        """Full content of one insurer document."""

    @abc.abstractmethod
    def confirm_download(self, ref: str) -> bool:
        """Mark a document as received so the clearing house stops offering it."""

    @abc.abstractmethod
    def list_notifications(self) -> list[UpstreamNotification]:
        """Delivery / error notices waiting to be fetched."""

    @abc.abstractmethod
    def confirm_notification(self, notification_id: str) -> bool:
        """Mark a notification as fetched."""

    @abc.abstractmethod
    def list_participants(self, **query) -> list[Participant]:
        """Directory of insurers reachable through the clearing house."""

    def health(self) -> bool:
        """Whether the clearing house answers; transports without a reachability check report True."""
        return True

    def close(self) -> None:
        """Release connections. No-op unless the transport holds any."""
