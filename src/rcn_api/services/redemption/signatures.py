"""Customer approval message and EIP-191 signature recovery."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from eth_account import Account
from eth_account.messages import encode_defunct
from loguru import logger

from rcn_api.core.clock import ensure_aware
from rcn_api.core.settings import settings
from rcn_api.services.ledger.client import normalize_address


def format_amount(amount: Decimal) -> str:
    """Render an amount without trailing zeros (``100.00`` -> ``100``)."""

    quantized = Decimal(amount).quantize(Decimal("0.01"))
    if quantized == quantized.to_integral_value():
        return str(quantized.to_integral_value())
    return format(quantized.normalize(), "f")


def format_expiry(expires_at: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""

    value = ensure_aware(expires_at)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def build_approval_message(
    *,
    session_id: str,
    customer_address: str,
    shop_id: str,
    max_amount: Decimal,
    expires_at: datetime,
) -> str:
    """The exact text a customer wallet signs to approve a redemption session."""

    amount = format_amount(max_amount)
    return (
        f"{settings.redemption_signature_brand} Redemption Request\n"
        "\n"
        f"Session ID: {session_id}\n"
        f"Customer: {normalize_address(customer_address)}\n"
        f"Shop: {shop_id}\n"
        f"Amount: {amount} RCN\n"
        f"Expires: {format_expiry(expires_at)}\n"
        "\n"
        f"By signing this message, I approve the redemption of {amount} RCN tokens at the specified shop."
    )


class SignatureVerifier(Protocol):
    def recover_address(self, message: str, signature: str) -> str | None:
        ...


class EthSignatureVerifier:
    """Recovers the signer of an Ethereum personal-sign message."""

    def recover_address(self, message: str, signature: str) -> str | None:
        candidate = (signature or "").strip()
        if not candidate:
            return None
        if not candidate.startswith("0x"):
            candidate = f"0x{candidate}"
        if len(candidate) != 132:
            logger.warning("Rejected signature with unexpected length", length=len(candidate) - 2)
            return None
        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=candidate)
        except Exception as exc:  # eth_keys raises BadSignature outside the ValueError hierarchy
            logger.warning("Signature recovery failed", error=str(exc))
            return None
        return normalize_address(recovered)


def signature_matches(
    verifier: SignatureVerifier,
    *,
    message: str,
    signature: str,
    expected_address: str,
) -> bool:
    recovered = verifier.recover_address(message, signature)
    return recovered is not None and recovered == normalize_address(expected_address)


__all__ = [
    "EthSignatureVerifier",
    "SignatureVerifier",
    "build_approval_message",
    "format_amount",
    "format_expiry",
    "signature_matches",
]
