from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ..validation import clean_contact, mask_contact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    """
    accepted=True only when the channel acknowledged the message. Anything
    else (rejection, timeout, transport error, missing config) is a failure.
    """

    accepted: bool
    message_id: Optional[str] = None
    reason: Optional[str] = None


class MessagingChannel(Protocol):
    def send(self, to: str, template_id: str, params: List[str]) -> SendResult: ...


class WhatsAppChannel:
    """
    WhatsApp Cloud API template sender.

    POST {api_url}/{phone_number_id}/messages with a template body whose
    parameters fill the template placeholders in order.
    """

    def __init__(
        self,
        api_url: str,
        access_token: str,
        phone_number_id: str,
        *,
        language: str = "en_US",
        country_code: str = "91",
        timeout_s: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.phone_number_id = phone_number_id
        self.language = language
        self.country_code = country_code
        self._client = client or httpx.Client(
            base_url=api_url.rstrip("/"),
            timeout=timeout_s,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def close(self) -> None:
        self._client.close()

    def format_recipient(self, contact: str) -> str:
        return f"{self.country_code}{clean_contact(contact)}"

    def build_payload(self, to: str, template_id: str, params: List[str]) -> Dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "to": self.format_recipient(to),
            "type": "template",
            "template": {
                "name": template_id,
                "language": {"code": self.language},
                "components": [
                    {
                        "type": "body",
                        "parameters": [{"type": "text", "text": str(p)} for p in params],
                    }
                ],
            },
        }

    def send(self, to: str, template_id: str, params: List[str]) -> SendResult:
        payload = self.build_payload(to, template_id, params)
        try:
            r = self._client.post(f"/{self.phone_number_id}/messages", json=payload)
        except httpx.TimeoutException:
            logger.error("whatsapp send timed out to=%s", mask_contact(to))
            return SendResult(accepted=False, reason="timeout")
        except httpx.HTTPError as e:
            logger.error("whatsapp send transport error to=%s error=%s", mask_contact(to), e)
            return SendResult(accepted=False, reason=f"transport_error: {e}")

        if r.status_code >= 400:
            logger.error(
                "whatsapp api error status=%s to=%s body=%s",
                r.status_code,
                mask_contact(to),
                r.text[:300],
            )
            return SendResult(accepted=False, reason=f"http_{r.status_code}")

        try:
            data = r.json()
        except ValueError:
            data = {}
        messages = data.get("messages") or []
        message_id = messages[0].get("id") if messages else None
        if not message_id:
            return SendResult(accepted=False, reason="no_message_id")

        logger.info("whatsapp notification accepted to=%s message_id=%s", mask_contact(to), message_id)
        return SendResult(accepted=True, message_id=message_id)


class DisabledChannel:
    """
    Used when the messaging channel is not configured. Every send fails, so
    references stay notification_sent=False and can be retried once the
    channel is set up.
    """

    def __init__(self, reason: str = "channel_not_configured") -> None:
        self.reason = reason

    def send(self, to: str, template_id: str, params: List[str]) -> SendResult:
        logger.warning("messaging channel disabled, skipping notification to=%s", mask_contact(to))
        return SendResult(accepted=False, reason=self.reason)
