"""
Utility functions for the Twilio SMS webhook.
"""

import hmac
import logging
from typing import Mapping, Optional

from twilio.request_validator import RequestValidator
from twilio.twiml.messaging_response import MessagingResponse

logger = logging.getLogger(__name__)


def verify_twilio_signature(url: str, params: Mapping[str, str], signature: str, auth_token: str) -> bool:
    """
    Verify the X-Twilio-Signature header of a webhook request.

    Args:
        url: Full URL Twilio posted to, including any query string
        params: Form fields of the request
        signature: Value of the X-Twilio-Signature header
        auth_token: Twilio account auth token

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Verifying Twilio signature for {url}")
    is_valid = RequestValidator(auth_token).validate(url, dict(params), signature)
    logger.info(f"Twilio signature verification: {'valid' if is_valid else 'invalid'}")
    return is_valid


def build_twiml_reply(message: str) -> str:
    """Wrap reply text in a TwiML <Response><Message> envelope."""
    response = MessagingResponse()
    response.message(message)
    return str(response)


def verify_admin_key(provided: Optional[str], expected: str) -> bool:
    """Constant-time check of the X-Admin-Key header; an empty expected key never matches."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
