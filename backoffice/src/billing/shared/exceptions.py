"""
Billing Exceptions

Errors raised by the credit ledger, gateway clients and webhook handlers.
Each one renders as a JSON body through to_dict() and carries the HTTP
status the exception handler answers with.
"""


class BillingError(Exception):
    """
    Root of the billing errors.

    The app registers one handler for this class, so subclasses only set
    status_code, code and details.
    """

    status_code: int = 400

    def __init__(self, message: str, code: str = "BILLING_ERROR", details: dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Response body: error code, message and the details flattened in."""
        return {
            'error': self.code,
            'message': self.message,
            **self.details,
        }


class InsufficientCreditsError(BillingError):
    """
    Raised when a tenant doesn't have enough credits for an operation.

    Attributes:
        required: Credits required for the operation (BRL)
        available: Credits currently available (BRL)
    """

    status_code = 402

    def __init__(
        self,
        message: str = "Insufficient credits for this operation",
        required: float = 0,
        available: float = 0
    ):
        super().__init__(
            message=message,
            code="insufficient_credits",
            details={
                'required': required,
                'available': available,
                'shortfall': max(0, required - available)
            }
        )
        self.required = required
        self.available = available


class TenantBlockedError(BillingError):
    """Raised when a blocked tenant calls a billed route."""

    status_code = 402

    def __init__(
        self,
        message: str = "Your account is blocked due to a pending payment. Please settle your invoice to continue.",
        blocked_at: str = None,
        reason: str = None
    ):
        super().__init__(
            message=message,
            code="payment_required",
            details={'blocked_at': blocked_at, 'reason': reason}
        )


class LimitExceededError(BillingError):
    """
    Raised when a tenant reaches a plan limit.

    Attributes:
        limit_key: The plan limit that was hit
        limit: The configured limit value
    """

    status_code = 403

    def __init__(self, limit_key: str, limit: int, resource_name: str = None, plan_name: str = None):
        resource = resource_name or limit_key
        plan = plan_name or 'current'
        super().__init__(
            message=(
                f"You have reached the limit of {limit} {resource} on your {plan} plan. "
                "Upgrade to increase the limit."
            ),
            code="limit_exceeded",
            details={'limit_key': limit_key, 'limit': limit}
        )
        self.limit_key = limit_key
        self.limit = limit


class BudgetExhaustedError(BillingError):
    """Raised when the selected LLM provider has spent its monthly budget."""

    status_code = 429

    def __init__(self, provider_id: str, budget_usd: float = None, spent_usd: float = None):
        super().__init__(
            message="Monthly budget for the LLM provider is exhausted",
            code="budget_exhausted",
            details={'provider_id': provider_id, 'monthly_budget_usd': budget_usd, 'spent_usd': spent_usd}
        )


class PaymentError(BillingError):
    """
    Raised when a payment gateway call fails.

    Examples:
        - Customer creation rejected
        - Charge creation rejected
        - Gateway unreachable
    """

    status_code = 502

    def __init__(
        self,
        message: str = "Payment gateway error",
        provider: str = None,
        gateway_status: int = None
    ):
        details = {}
        if provider:
            details['provider'] = provider
        if gateway_status is not None:
            details['gateway_status'] = gateway_status

        super().__init__(
            message=message,
            code="payment_error",
            details=details
        )
        self.provider = provider
        self.gateway_status = gateway_status


class GatewayNotConfiguredError(BillingError):
    """Raised when a gateway has no credentials configured."""

    status_code = 422

    def __init__(self, provider: str):
        super().__init__(
            message=f"Payment gateway '{provider}' is not configured",
            code="gateway_not_configured",
            details={'provider': provider}
        )


class UnsupportedGatewayError(BillingError):
    """Raised when a provider name does not map to a gateway client."""

    status_code = 422

    def __init__(self, provider: str):
        super().__init__(
            message=f"Unsupported billing provider: {provider}",
            code="unsupported_gateway",
            details={'provider': provider}
        )


class WebhookError(BillingError):
    """
    Raised when webhook intake or processing fails.

    Attributes:
        event_id: The provider event identifier, if known
        event_type: The event type, if known
    """

    def __init__(
        self,
        message: str = "Webhook could not be handled",
        event_id: str = None,
        event_type: str = None,
        status_code: int = 400
    ):
        details = {}
        if event_id:
            details['event_id'] = event_id
        if event_type:
            details['event_type'] = event_type

        super().__init__(
            message=message,
            code="webhook_error",
            details=details
        )
        self.event_id = event_id
        self.event_type = event_type
        self.status_code = status_code


class CircuitBreakerOpenError(BillingError):
    """
    Raised when the gateway circuit breaker is open.

    This prevents cascading failures when a payment gateway is unavailable.
    """

    status_code = 503

    def __init__(self, circuit_name: str = "stripe_api", retry_after: int = None):
        super().__init__(
            message=f"Circuit breaker '{circuit_name}' is open. Service temporarily unavailable.",
            code="circuit_breaker_open",
            details={
                'circuit_name': circuit_name,
                'retry_after': retry_after
            }
        )
