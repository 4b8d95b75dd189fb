import hashlib
import hmac


def compute_signature(secret: str, message: bytes) -> str:
    """Hex-encoded HMAC-SHA256 of message under secret."""
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def order_payment_message(order_id: str, payment_id: str) -> bytes:
    return f"{order_id}|{payment_id}".encode("utf-8")


def signatures_match(expected: str, provided: str) -> bool:
    if not isinstance(provided, str) or not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))
