"""
MediData proxy client.

The proxy forwards to MediData ELA (which geoblocks non-Swiss hosts) and
wraps every reply in an envelope:

    {"success": bool, "status": int, "data": ..., "message": str, "error": str}

Routes used:
    POST /api/medidata/upload                     multipart upload (file + info)
    POST /api/medidata/send-xml                   raw XML upload (x-filename, x-info)
    GET  /api/medidata/uploads/{ref}/status
    GET  /api/medidata/downloads
    GET  /api/medidata/downloads/{ref}
    PUT  /api/medidata/downloads/{ref}/status     {"status": "CONFIRMED"}
    GET  /api/medidata/notifications
    PUT  /api/medidata/notifications/{id}/status  {"notificationFetched": true}
    GET  /api/medidata/participants

The client holds no module-level state: build one per job or request from
an explicit TransportConfig.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx
from dateutil import parser as date_parser

from app.services.transport.base import (
    ClearingHouseTransport,
    DownloadEntry,
    Participant,
    TransportError,
    UploadResult,
    UploadStatus,
    UpstreamNotification,
)

logger = logging.getLogger(__name__)

# Keys the proxy has used for the upload reference, in preference order
MESSAGE_ID_KEYS = ("transmissionReference", "id", "messageId", "message_id")


@dataclass(frozen=True)
class TransportConfig:
    base_url: str
    api_key: str
    timeout_seconds: float = 30.0
    upload_retry_delays: tuple[float, ...] = (0.0, 2.0, 5.0)

    @classmethod
    def from_settings(cls, settings=None) -> "TransportConfig":
        if settings is None:
            from app.settings import settings
        return cls(
            base_url=settings.medidata_proxy_url.rstrip("/"),
            api_key=settings.medidata_proxy_api_key,
            timeout_seconds=settings.medidata_timeout_seconds,
            upload_retry_delays=tuple(settings.medidata_upload_retry_delays) or (0.0,),
        )


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Upstream timestamps are ISO-8601; naive values are taken as UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.isoparse(str(value))
        except (ValueError, OverflowError):
            logger.debug("Unparseable upstream timestamp %r", value)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_message_id(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    for key in MESSAGE_ID_KEYS:
        value = data.get(key)
        if value not in (None, ""):
            return str(value)
    return None


class MediDataProxyClient(ClearingHouseTransport):
    """
    ClearingHouseTransport over the MediData proxy, using a synchronous
    httpx.Client with a bounded timeout on every call.

    `transport` lets tests plug in httpx.MockTransport; `sleep` lets them skip
    the upload retry delays.
    """

    def __init__(
        self,
        config: TransportConfig,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=config.base_url,
            headers={"x-api-key": config.api_key},
            timeout=config.timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "MediDataProxyClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Envelope handling ─────────────────────────────────────────────────────

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"Timeout calling {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error calling {method} {path}: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {"success": response.is_success, "data": response.text}
        if not isinstance(body, dict):
            body = {"success": response.is_success, "data": body}

        status_code = _status_code(body, response.status_code)
        if not response.is_success or not body.get("success"):
            message = body.get("message") or body.get("error") or f"{method} {path} failed"
            raise TransportError(str(message), status_code=status_code)

        body["status"] = status_code
        return body

    # ── Uploads ───────────────────────────────────────────────────────────────

    def submit(self, document_xml: str, filename: str, info: dict) -> UploadResult:
        """
        Upload via multipart; a 403 is retried after the configured delays and
        the final attempt switches to the raw-XML route.
        """
        delays = self.config.upload_retry_delays
        payload = document_xml.encode("utf-8")
        info_json = json.dumps(info or {}, default=str)

        for attempt, delay in enumerate(delays):
            if delay > 0:
                logger.info(
                    "Retrying upload of %s (attempt %d/%d) after %.1fs",
                    filename,
                    attempt + 1,
                    len(delays),
                    delay,
                )
                self._sleep(delay)

            use_raw = len(delays) > 1 and attempt == len(delays) - 1
            try:
                if use_raw:
                    envelope = self._request(
                        "POST",
                        "/api/medidata/send-xml",
                        content=payload,
                        headers={
                            "Content-Type": "application/xml",
                            "x-filename": filename,
                            "x-info": info_json,
                        },
                    )
                else:
                    envelope = self._request(
                        "POST",
                        "/api/medidata/upload",
                        files={"file": (filename, payload, "application/xml")},
                        data={"info": info_json},
                    )
            except TransportError as exc:
                if exc.status_code == 403 and attempt < len(delays) - 1:
                    logger.warning(
                        "Upload of %s refused with 403 on attempt %d", filename, attempt + 1
                    )
                    continue
                raise

            message_id = extract_message_id(envelope.get("data"))
            if message_id is None:
                raise TransportError(
                    "Upload accepted but no message id returned",
                    status_code=envelope["status"],
                )
            logger.info("Uploaded %s as message %s", filename, message_id)
            return UploadResult(
                message_id=message_id, status_code=envelope["status"], raw=envelope
            )

        raise TransportError("All upload attempts exhausted")

    def check_status(self, message_id: str) -> UploadStatus:
        envelope = self._request(
            "GET", f"/api/medidata/uploads/{quote(message_id, safe='')}/status"
        )
        data = envelope.get("data") if isinstance(envelope.get("data"), dict) else {}
        return UploadStatus(
            status=data.get("status"),
            error_reason=data.get("errorReason"),
            created=parse_timestamp(data.get("created")),
            raw=envelope,
        )

    # ── Downloads ─────────────────────────────────────────────────────────────

    def list_downloads(self) -> list[DownloadEntry]:
        envelope = self._request("GET", "/api/medidata/downloads")
        entries = []
        for item in _as_list(envelope.get("data")):
            ref = item.get("transmissionReference")
            if not ref:
                logger.warning("Download listing entry without reference: %r", item)
                continue
            entries.append(
                DownloadEntry(
                    transmission_reference=str(ref),
                    correlation_reference=item.get("correlationReference"),
                    document_reference=item.get("documentReference"),
                    sender_gln=item.get("senderGln"),
                    created=parse_timestamp(item.get("created")),
                    raw=item,
                )
            )
        return entries

    def fetch_download(self, ref: str) -> str:
        envelope = self._request("GET", f"/api/medidata/downloads/{quote(ref, safe='')}")
        data = envelope.get("data")
        if isinstance(data, str):
            return data
        return json.dumps(data)

    def confirm_download(self, ref: str) -> bool:
        try:
            self._request(
                "PUT",
                f"/api/medidata/downloads/{quote(ref, safe='')}/status",
                json={"status": "CONFIRMED"},
            )
        except TransportError as exc:
            logger.warning("Could not confirm download %s: %s", ref, exc)
            return False
        return True

    # ── Notifications ─────────────────────────────────────────────────────────

    def list_notifications(self) -> list[UpstreamNotification]:
        envelope = self._request("GET", "/api/medidata/notifications")
        notifications = []
        for item in _as_list(envelope.get("data")):
            if item.get("id") in (None, ""):
                continue
            notifications.append(
                UpstreamNotification(
                    id=str(item["id"]),
                    message=item.get("message"),
                    severity=item.get("severity"),
                    error_code=item.get("errorCode"),
                    transmission_reference=item.get("transmissionReference"),
                    created=parse_timestamp(item.get("created")),
                    raw=item,
                )
            )
        return notifications

    def confirm_notification(self, notification_id: str) -> bool:
        try:
            self._request(
                "PUT",
                f"/api/medidata/notifications/{quote(str(notification_id), safe='')}/status",
                json={"notificationFetched": True},
            )
        except TransportError as exc:
            logger.warning("Could not confirm notification %s: %s", notification_id, exc)
            return False
        return True

    # ── Directory / health ────────────────────────────────────────────────────

    def list_participants(self, **query) -> list[Participant]:
        params = {k: v for k, v in query.items() if v is not None}
        envelope = self._request("GET", "/api/medidata/participants", params=params)
        return [
            Participant(
                gln=str(item.get("glnParticipant", "")),
                receiver_gln=item.get("glnReceiver"),
                name=item.get("name", ""),
                law_types=list(item.get("lawTypes") or []),
                tg_allowed=item.get("tgAllowed"),
                raw=item,
            )
            for item in _as_list(envelope.get("data"))
        ]

    def health(self) -> bool:
        try:
            return self._client.get("/health").is_success
        except httpx.HTTPError:
            return False


def _as_list(data: Any) -> list[dict]:
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


def _status_code(body: dict, http_status: int) -> int:
    for key in ("status", "medidataStatus"):
        value = body.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return http_status


def get_transport(config: Optional[TransportConfig] = None) -> ClearingHouseTransport:
    """Factory — a fresh client per caller, configured from settings by default."""
    return MediDataProxyClient(config or TransportConfig.from_settings())
