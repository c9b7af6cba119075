"""
Billing error taxonomy.

Services raise these; app.main renders them as
``{"error": {"code": ..., "message": ...}}`` with the matching status code.
"""
from typing import Optional


class BillingError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500
    code = "billing_error"

    def __init__(self, message: str, support: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.support = support

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.support:
            body["support"] = self.support
        return {"error": body}


class AuthenticationRequired(BillingError):
    status_code = 401
    code = "authentication_required"

    def __init__(self, message: str = "You are not signed in."):
        super().__init__(message)


class NotFound(BillingError):
    """User, organization or customer does not exist."""
    status_code = 404
    code = "not_found"


class SignatureInvalid(BillingError):
    """Webhook payload failed the Stripe signature check."""
    status_code = 400
    code = "signature_invalid"


class UpstreamProviderError(BillingError):
    """A Stripe API call failed (network, rate limit, validation)."""
    status_code = 502
    code = "upstream_provider_error"


class CheckoutUnavailable(UpstreamProviderError):
    code = "checkout_unavailable"


class DataIntegrityGap(BillingError):
    """
    A webhook references a Stripe customer that carries no userId or
    organizationId metadata. Retrying cannot fix it, so the event is dropped.
    """
    status_code = 422
    code = "data_integrity_gap"
