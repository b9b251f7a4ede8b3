from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PixPayer:
    first_name: str
    last_name: str
    cpf: str
    email: str | None = None
    phone: str | None = None


@dataclass
class PixPaymentResult:
    payment_id: str
    status: str
    qr_code: str
    qr_code_base64: str
    external_reference: str
    provider: str
    raw: dict | None = None


@dataclass
class PaymentStatusResult:
    payment_id: str
    status: str
    status_detail: str
    external_reference: str
    amount: float
    date_approved: str | None = None
    raw: dict | None = None


class PaymentsProvider:
    name = "unknown"

    def create_pix_payment(
        self,
        *,
        amount: float,
        description: str,
        payer: PixPayer,
        external_reference: str,
        notification_url: str,
    ) -> PixPaymentResult:
        raise NotImplementedError

    def get_payment(self, payment_id: str) -> PaymentStatusResult:
        raise NotImplementedError
