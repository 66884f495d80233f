"""
Message Channel Adapter - abstracts the WhatsApp gateway for easier testing

The executor only sees send(phone_number, body) -> SendResult, so tests
inject MockChannelAdapter instead of patching HTTP calls.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from config import settings
from utils.time_utils import now_utc

from .business_logic import format_whatsapp_number

logger = logging.getLogger("channel-adapter")


@dataclass
class SendResult:
    """Result of a send attempt"""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class MessageChannelAdapter(ABC):
    """Abstract interface for outbound patient messaging"""

    @abstractmethod
    def send(self, phone_number: str, body: str) -> SendResult:
        """Send a text message; may return success=False or raise"""
        pass


class WhatsAppGatewayAdapter(MessageChannelAdapter):
    """Fonnte-compatible WhatsApp HTTP gateway"""

    def __init__(
        self,
        api_url: str = None,
        api_token: str = None,
        timeout: float = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url or settings.WHATSAPP_API_URL
        self.api_token = api_token or settings.WHATSAPP_API_TOKEN
        self.timeout = timeout or settings.WHATSAPP_TIMEOUT_SECONDS
        self.session = session or requests.Session()

        if not self.api_token:
            logger.error("WHATSAPP_API_TOKEN is not set")
            raise ValueError("WHATSAPP_API_TOKEN must be set to send WhatsApp messages")

    def send(self, phone_number: str, body: str) -> SendResult:
        target = format_whatsapp_number(phone_number)
        try:
            response = self.session.post(
                self.api_url,
                json={"target": target, "message": body},
                headers={"Authorization": self.api_token},
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as e:
            logger.error(f"WhatsApp gateway request to {target} failed: {e}")
            return SendResult(success=False, error=str(e))
        except ValueError as e:
            logger.error(f"WhatsApp gateway returned invalid JSON: {e}")
            return SendResult(success=False, error="Invalid gateway response")

        if not result.get("status"):
            error = result.get("reason") or "WhatsApp gateway error"
            logger.warning(f"WhatsApp gateway rejected message to {target}: {error}")
            return SendResult(success=False, error=error)

        # the gateway returns ids as a list for multi-target sends
        message_id = result.get("id")
        if isinstance(message_id, list):
            message_id = message_id[0] if message_id else None
        message_id = str(message_id) if message_id else f"wa_{int(now_utc().timestamp() * 1000)}"

        logger.info(f"Sent WhatsApp message {message_id} to {target}")
        return SendResult(success=True, message_id=message_id)


class MockChannelAdapter(MessageChannelAdapter):
    """Mock implementation for testing"""

    def __init__(self):
        self.messages_sent: List[Dict[str, Any]] = []
        self.should_fail = False
        self.should_raise = False
        self.failure_error = None

    def send(self, phone_number: str, body: str) -> SendResult:
        if self.should_raise:
            raise ConnectionError(self.failure_error or "Mock channel connection error")
        if self.should_fail:
            return SendResult(success=False, error=self.failure_error or "Mock send failure")

        message_id = f"mock-message-{len(self.messages_sent) + 1}"
        self.messages_sent.append({
            "id": message_id,
            "phone_number": phone_number,
            "body": body,
        })
        return SendResult(success=True, message_id=message_id)

    def reset(self):
        """Reset mock state"""
        self.messages_sent.clear()
        self.should_fail = False
        self.should_raise = False
        self.failure_error = None


def create_channel_adapter(mock: bool = False) -> MessageChannelAdapter:
    """Factory function to create the message channel adapter"""
    if mock:
        return MockChannelAdapter()
    return WhatsAppGatewayAdapter()
