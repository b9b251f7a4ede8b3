from __future__ import annotations


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


class PaymentGatewayError(RuntimeError):
    """Raised when the payment gateway cannot complete a call."""

    def __init__(self, code: str, detail: str = "", http_status: int | None = None):
        super().__init__(f"{code}:{detail}" if detail else code)
        self.code = code
        self.detail = detail
        self.http_status = http_status
