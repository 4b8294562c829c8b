"""Outbound message transport (WhatsApp Cloud API / Instagram Messaging).

The dispatcher only records success or failure; provider response bodies
are passed through verbatim as the error text and never interpreted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import MessageChannel
from app.db.models import ClinicSettings

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], httpx.AsyncClient]


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: str | None = None


class MessageSender(Protocol):
    async def send(
        self, clinic_id: UUID, address: str, channel: MessageChannel, text: str
    ) -> SendResult: ...


def _default_client_factory() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.MESSAGING_HTTP_TIMEOUT)


class MetaMessageSender:
    """Sends text messages through the Meta Graph API with per-clinic credentials."""

    def __init__(
        self,
        db: Session,
        client_factory: ClientFactory = _default_client_factory,
        base_url: str | None = None,
    ) -> None:
        self.db = db
        self.client_factory = client_factory
        self.base_url = base_url or settings.graph_base_url

    async def send(
        self, clinic_id: UUID, address: str, channel: MessageChannel, text: str
    ) -> SendResult:
        clinic_settings = (
            self.db.query(ClinicSettings)
            .filter(ClinicSettings.clinic_id == clinic_id)
            .first()
        )
        if not clinic_settings:
            return SendResult(False, "Clinic settings not found")

        if MessageChannel(channel) == MessageChannel.INSTAGRAM:
            if not clinic_settings.instagram_access_token:
                return SendResult(False, "Instagram not configured")
            url = f"{self.base_url}/me/messages"
            token = clinic_settings.instagram_access_token
            payload = {
                "recipient": {"id": address},
                "message": {"text": text},
            }
        else:
            if not clinic_settings.whatsapp_token or not clinic_settings.whatsapp_phone_number_id:
                return SendResult(False, "WhatsApp not configured")
            url = f"{self.base_url}/{clinic_settings.whatsapp_phone_number_id}/messages"
            token = clinic_settings.whatsapp_token
            payload = {
                "messaging_product": "whatsapp",
                "to": address,
                "type": "text",
                "text": {"body": text},
            }

        return await self._post(url, token, payload)

    async def _post(self, url: str, token: str, payload: dict) -> SendResult:
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        try:
            async with self.client_factory() as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Meta message send failed: %s", type(e).__name__)
            return SendResult(False, str(e) or type(e).__name__)

        if response.is_success:
            return SendResult(True)

        logger.warning("Meta message send returned HTTP %s", response.status_code)
        return SendResult(False, response.text or f"HTTP {response.status_code}")


class DryRunMessageSender:
    """Logs instead of sending. Used when MESSAGING_DRY_RUN is enabled."""

    async def send(
        self, clinic_id: UUID, address: str, channel: MessageChannel, text: str
    ) -> SendResult:
        logger.info(
            "[DRY RUN] Follow-up message skipped for clinic=%s channel=%s",
            clinic_id,
            MessageChannel(channel).value,
        )
        return SendResult(True)


def get_message_sender(db: Session) -> MessageSender:
    """Sender configured for this deployment."""
    if settings.MESSAGING_DRY_RUN:
        return DryRunMessageSender()
    return MetaMessageSender(db)
