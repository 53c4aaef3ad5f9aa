"""Redemption authorization and session protocol exports."""

from .authorization import RedemptionAuthorizer, RedemptionDecision  # noqa: F401
from .sessions import (  # noqa: F401
    ConsumptionResult,
    CreatedSession,
    RedemptionSessionService,
    qr_payload_for,
    signing_message_for,
)
from .signatures import EthSignatureVerifier, SignatureVerifier, build_approval_message  # noqa: F401
