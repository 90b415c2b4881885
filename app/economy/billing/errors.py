class BillingError(Exception):
    code = "E_BILLING"
    http_status = 400

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message or self.code)


class BillingValidationError(BillingError):
    code = "E_VALIDATION"


class SubscriptionConflictError(BillingError):
    code = "ALREADY_SUBSCRIBED"

    def __init__(self, reason: str) -> None:
        super().__init__(f"subscription conflict: {reason}", code=reason)
        self.reason = reason


class PricingUnavailableError(BillingError):
    code = "NO_PRICE_AVAILABLE"


class ProviderUnavailableError(BillingError):
    code = "PROVIDER_UNAVAILABLE"
    http_status = 502


class SignatureInvalidError(BillingError):
    code = "E_SIGNATURE_INVALID"


class InvalidEventPayloadError(BillingError):
    code = "E_INVALID_EVENT_PAYLOAD"


class DuplicateEventError(BillingError):
    code = "DUPLICATE_EVENT"
    http_status = 200


class PersistenceFailureError(BillingError):
    code = "E_PERSISTENCE_FAILURE"
    http_status = 500


class LedgerReferenceError(PersistenceFailureError):
    code = "E_LEDGER_REFERENCE"


class SubscriptionNotFoundError(BillingError):
    code = "E_SUBSCRIPTION_NOT_FOUND"
    http_status = 404


class InsufficientTokensError(BillingError):
    code = "E_INSUFFICIENT_TOKENS"
    http_status = 402


class MessageSessionNotFoundError(BillingError):
    code = "E_MESSAGE_SESSION_NOT_FOUND"
    http_status = 404
