"""
Provider change-notification verification and payload models.

The provider signs each notification with HMAC-SHA256 over
"v0:{timestamp}:{body}" using the shared signing secret, hex encoded.
"""

import hashlib
import hmac
from typing import List, Optional, Union

from pydantic import BaseModel, Field

TIMESTAMP_HEADER = "X-Aurinko-Request-Timestamp"
SIGNATURE_HEADER = "X-Aurinko-Signature"


class NotificationPayload(BaseModel):
    id: Optional[str] = None
    changeType: Optional[str] = None
    attributes: dict = Field(default_factory=dict)


class Notification(BaseModel):
    subscription: Optional[Union[int, str]] = None
    resource: Optional[str] = None
    accountId: Union[int, str]
    payloads: List[NotificationPayload] = Field(default_factory=list)

    @property
    def account_id(self) -> str:
        return str(self.accountId)


def compute_signature(secret: str, timestamp: str, body: Union[str, bytes]) -> str:
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    basestring = f"v0:{timestamp}:{body}"
    return hmac.new(secret.encode("utf-8"), basestring.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(secret: str, timestamp: str, body: Union[str, bytes], signature: str) -> bool:
    """Constant-time comparison of the received signature with the expected one."""
    if not secret:
        return False
    expected = compute_signature(secret, timestamp, body)
    return hmac.compare_digest(expected, signature.strip().lower())
