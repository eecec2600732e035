"""
Webhook authenticity checks.

All comparisons go through ``hmac.compare_digest``.
"""

import base64
import hashlib
import hmac
import ipaddress
from typing import Any, Mapping

from callhelm.shared.logging import get_logger

logger = get_logger(__name__)


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, Any]) -> str:
    """Twilio/SignalWire signature: base64 HMAC-SHA1 over URL + sorted key/value pairs."""
    data = url
    for key in sorted(params):
        data += f"{key}{params[key]}"
    digest = hmac.new(auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_twilio_signature(
    auth_token: str,
    signature: str | None,
    url: str,
    params: Mapping[str, Any],
) -> bool:
    if not signature or not auth_token:
        return False
    expected = compute_twilio_signature(auth_token, url, params)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", "ignore"))


def ip_in_allowlist(client_ip: str | None, allowed: list[str]) -> bool:
    """True when ``client_ip`` falls in one of the CIDR ranges (or exact addresses)."""
    if not client_ip:
        return False
    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        return False
    for entry in allowed:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning("Ignoring invalid allowlist entry", extra={"entry": entry})
    return False
