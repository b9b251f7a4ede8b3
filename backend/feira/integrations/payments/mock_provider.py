from __future__ import annotations

import base64
import itertools
from datetime import datetime

from feira.integrations.common import PaymentGatewayError
from feira.integrations.payments.base import PaymentsProvider, PixPayer, PixPaymentResult, PaymentStatusResult


class MockPaymentsProvider(PaymentsProvider):
    """In-process stand-in for the gateway, used in dev and tests.

    Payments live in a class-level registry so every provider instance built
    during a process sees the same state. ``set_status`` plays the role of the
    payer completing (or abandoning) the PIX transfer.
    """

    name = "mock"

    _payments: dict[str, dict] = {}
    _ids = itertools.count(900000001)

    def create_pix_payment(
        self,
        *,
        amount: float,
        description: str,
        payer: PixPayer,
        external_reference: str,
        notification_url: str,
    ) -> PixPaymentResult:
        payment_id = str(next(self._ids))
        qr_code = f"00020126MOCKPIX{payment_id}5204000053039865406{float(amount):.2f}"
        record = {
            "id": payment_id,
            "status": "pending",
            "status_detail": "pending_waiting_transfer",
            "transaction_amount": round(float(amount), 2),
            "description": description,
            "external_reference": external_reference,
            "notification_url": notification_url,
            "payer_email": payer.email or "",
        }
        self._payments[payment_id] = record
        return PixPaymentResult(
            payment_id=payment_id,
            status="pending",
            qr_code=qr_code,
            qr_code_base64=base64.b64encode(qr_code.encode("utf-8")).decode("ascii"),
            external_reference=external_reference,
            provider=self.name,
            raw=dict(record),
        )

    def get_payment(self, payment_id: str) -> PaymentStatusResult:
        record = self._payments.get(str(payment_id))
        if record is None:
            raise PaymentGatewayError("MOCK_PAYMENT_NOT_FOUND", str(payment_id), http_status=404)
        return PaymentStatusResult(
            payment_id=record["id"],
            status=record["status"],
            status_detail=record["status_detail"],
            external_reference=record["external_reference"],
            amount=float(record["transaction_amount"]),
            date_approved=record.get("date_approved"),
            raw=dict(record),
        )

    @classmethod
    def set_status(cls, payment_id: str, status: str, status_detail: str = "") -> None:
        record = cls._payments.get(str(payment_id))
        if record is None:
            raise KeyError(payment_id)
        record["status"] = status
        record["status_detail"] = status_detail or status
        if status == "approved":
            record["date_approved"] = datetime.utcnow().isoformat()
