import hashlib
import hmac
import json
from typing import Any, Dict


def sign_body(body: bytes, secret: str) -> str:
    if not secret:
        return ""

    signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={signature}"


def generate_webhook_signature(payload: Dict[str, Any], secret: str) -> str:
    """
    Generate HMAC-SHA256 signature for webhook payload.

    Args:
        payload: Dictionary payload to sign
        secret: Webhook secret key

    Returns:
        str: Signature in format "sha256=<hex_digest>"

    Example:
        payload = {"request_id": "req-1", "status": "OK"}
        secret = "your_webhook_secret"
        signature = generate_webhook_signature(payload, secret)
        # Returns: "sha256=abc123..."
    """
    payload_str = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return sign_body(payload_str.encode("utf-8"), secret)


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check a raw request body against its signature header"""
    if not secret:
        return True
    if not signature:
        return False
    return hmac.compare_digest(sign_body(body, secret), signature)
