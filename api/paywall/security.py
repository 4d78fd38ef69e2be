"""
Security helpers for the x402 paywall
Message sanitization, admin key check and response headers
"""

import hmac
import re
import logging
from typing import Optional

from fastapi import HTTPException, Header, Request

from .config import get_paywall_config

logger = logging.getLogger(__name__)

MAX_PUBLIC_MESSAGE_LENGTH = 300

_BLOCK_PATTERN = re.compile(r'<(script|style)\b[^>]*>.*?</\1\s*>', re.IGNORECASE | re.DOTALL)
_TAG_PATTERN = re.compile(r'<[^>]*>')
_WHITESPACE_PATTERN = re.compile(r'\s+')


# =============================================================================
# MESSAGE SANITIZATION
# =============================================================================

def sanitize_public_message(value: Optional[str], max_length: int = MAX_PUBLIC_MESSAGE_LENGTH) -> str:
    """Reduce untrusted text to a short plain-text message"""
    if not value:
        return ''

    value = str(value).replace('\x00', '')
    value = _BLOCK_PATTERN.sub(' ', value)
    value = _TAG_PATTERN.sub(' ', value)
    value = _WHITESPACE_PATTERN.sub(' ', value).strip()

    if len(value) > max_length:
        value = value[:max_length - 3].rstrip() + '...'

    return value


# =============================================================================
# ADMIN AUTHENTICATION
# =============================================================================

async def verify_admin_key(
    request: Request,
    x_admin_key: Optional[str] = Header(None)
) -> bool:
    """Verify admin API key"""
    config = getattr(request.app.state, 'settings', None) or get_paywall_config()

    if not config.admin_key:
        logger.error("Admin endpoint called but PAYWALL_ADMIN_KEY is not configured")
        raise HTTPException(status_code=503, detail="Admin access not configured")

    if not x_admin_key or not hmac.compare_digest(x_admin_key, config.admin_key):
        client_host = request.client.host if request.client else 'unknown'
        logger.warning(f"Unauthorized admin access attempt from {client_host}")
        raise HTTPException(status_code=403, detail="Invalid admin key")

    return True


# =============================================================================
# SECURITY HEADERS
# =============================================================================

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def add_security_headers(response) -> None:
    """Add security headers to response"""
    for header, value in SECURITY_HEADERS.items():
        response.headers[header] = value
