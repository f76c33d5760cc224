"""
SMS delivery through a Twilio-compatible REST API.

Messages are posted as form data to
``{SMS_API_BASE_URL}/Accounts/{sid}/Messages.json`` with HTTP Basic auth.
Provider error bodies are logged here and never returned to callers.
"""

import logging
import re
from typing import Optional

import httpx

from .config import Settings, get_settings
from .exceptions import ConfigurationError, SmsDeliveryError

logger = logging.getLogger(__name__)


def format_phone_number(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number to E.164.

    - 10 digits: US number, +1 is prepended
    - 11 digits starting with 1: + is prepended
    - already '+'-prefixed with 8-15 digits: kept
    - anything else: None
    """
    if not phone:
        return None

    raw = phone.strip()
    digits = re.sub(r'\D', '', raw)

    if raw.startswith('+'):
        return f"+{digits}" if 8 <= len(digits) <= 15 else None
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith('1'):
        return f"+{digits}"
    return None


def mask_phone_number(phone: Optional[str]) -> str:
    """Display form with only the last four digits: ***-***-1234."""
    digits = re.sub(r'\D', '', phone or '')
    return f"***-***-{digits[-4:]}" if len(digits) >= 4 else "***-***-****"


class SmsClient:
    """
    Synchronous SMS sender.

    Args:
        account_sid: Provider account id
        auth_token: Provider auth token
        from_number: Sender number in E.164
        base_url: API root
        http_client: Optional preconfigured httpx.Client (tests pass one
            built on httpx.MockTransport)
    """

    def __init__(self, account_sid: Optional[str], auth_token: Optional[str],
                 from_number: Optional[str],
                 base_url: str = "https://api.twilio.com/2010-04-01",
                 timeout: float = 10.0,
                 http_client: Optional[httpx.Client] = None):
        if not account_sid or not auth_token or not from_number:
            raise ConfigurationError("SMS provider credentials are not configured")

        self._account_sid = account_sid
        self._from_number = from_number
        self._client = http_client or httpx.Client(
            base_url=base_url.rstrip('/'),
            timeout=timeout,
        )
        self._auth = httpx.BasicAuth(account_sid, auth_token)
        self._owns_client = http_client is None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'SmsClient':
        settings = settings or get_settings()
        return cls(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            settings.TWILIO_PHONE_NUMBER,
            base_url=settings.SMS_API_BASE_URL,
            timeout=settings.SMS_TIMEOUT_SECONDS,
        )

    def send_sms(self, to: str, body: str) -> str:
        """
        Send one message.

        Returns:
            Provider message id (may be empty if the provider omits it)

        Raises:
            SmsDeliveryError: Invalid number, transport failure or non-2xx
        """
        formatted = format_phone_number(to)
        if not formatted:
            raise SmsDeliveryError("Invalid phone number")

        try:
            response = self._client.post(
                f"/Accounts/{self._account_sid}/Messages.json",
                data={'To': formatted, 'From': self._from_number, 'Body': body},
                auth=self._auth,
            )
        except httpx.HTTPError as e:
            logger.error("SMS provider request failed: %s", e)
            raise SmsDeliveryError() from e

        if not response.is_success:
            logger.error(
                "SMS provider rejected message to %s: %s %s",
                mask_phone_number(formatted), response.status_code, response.text,
            )
            raise SmsDeliveryError()

        try:
            message_id = response.json().get('sid', '')
        except ValueError:
            message_id = ''
        logger.info("SMS sent to %s", mask_phone_number(formatted))
        return message_id

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> 'SmsClient':
        return self

    def __exit__(self, *exc) -> None:
        self.close()
