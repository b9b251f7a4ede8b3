from __future__ import annotations

import requests

from feira.integrations.common import PaymentGatewayError
from feira.integrations.payments.base import PaymentsProvider, PixPayer, PixPaymentResult, PaymentStatusResult

API_BASE = "https://api.mercadopago.com"


class MercadoPagoPaymentsProvider(PaymentsProvider):
    name = "mercadopago"

    def __init__(self, access_token: str, timeout: float = 10.0):
        self.access_token = access_token
        self.timeout = timeout

    def _headers(self, idempotency_key: str | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    @staticmethod
    def _payer_payload(payer: PixPayer) -> dict:
        body = {
            "first_name": payer.first_name,
            "last_name": payer.last_name,
            "email": payer.email or "",
            "identification": {"type": "CPF", "number": payer.cpf},
        }
        if payer.phone:
            phone = payer.phone
            if len(phone) >= 12 and phone.startswith("55"):
                phone = phone[2:]
            body["phone"] = {"area_code": phone[:2], "number": phone[2:]}
        return body

    def _request(self, method: str, path: str, *, code: str, **kwargs) -> dict:
        try:
            r = requests.request(method, f"{API_BASE}{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise PaymentGatewayError(code, type(e).__name__) from e
        try:
            j = r.json() if r.content else {}
        except ValueError:
            j = {}
        if r.status_code < 200 or r.status_code >= 300:
            msg = str((j.get("message") if isinstance(j, dict) else "") or f"HTTP {r.status_code}").strip()
            raise PaymentGatewayError(code, msg, http_status=r.status_code)
        if not isinstance(j, dict):
            raise PaymentGatewayError(code, "unexpected response body", http_status=r.status_code)
        return j

    def create_pix_payment(
        self,
        *,
        amount: float,
        description: str,
        payer: PixPayer,
        external_reference: str,
        notification_url: str,
    ) -> PixPaymentResult:
        payload = {
            "transaction_amount": round(float(amount), 2),
            "description": description,
            "payment_method_id": "pix",
            "payer": self._payer_payload(payer),
            "external_reference": external_reference,
            "notification_url": notification_url,
        }
        j = self._request(
            "POST",
            "/v1/payments",
            code="MERCADOPAGO_CREATE_FAILED",
            headers=self._headers(idempotency_key=external_reference),
            json=payload,
        )
        payment_id = j.get("id")
        if payment_id in (None, ""):
            raise PaymentGatewayError("MERCADOPAGO_CREATE_FAILED", "missing payment id")
        tx = ((j.get("point_of_interaction") or {}).get("transaction_data") or {})
        return PixPaymentResult(
            payment_id=str(payment_id),
            status=str(j.get("status") or "pending").strip().lower(),
            qr_code=str(tx.get("qr_code") or ""),
            qr_code_base64=str(tx.get("qr_code_base64") or ""),
            external_reference=str(j.get("external_reference") or external_reference),
            provider=self.name,
            raw=j,
        )

    def get_payment(self, payment_id: str) -> PaymentStatusResult:
        pid = str(payment_id or "").strip()
        if not pid:
            raise PaymentGatewayError("MERCADOPAGO_GET_FAILED", "missing payment id")
        j = self._request(
            "GET",
            f"/v1/payments/{pid}",
            code="MERCADOPAGO_GET_FAILED",
            headers=self._headers(),
        )
        try:
            amount = float(j.get("transaction_amount") or 0)
        except (TypeError, ValueError):
            amount = 0.0
        return PaymentStatusResult(
            payment_id=str(j.get("id") or pid),
            status=str(j.get("status") or "").strip().lower(),
            status_detail=str(j.get("status_detail") or ""),
            external_reference=str(j.get("external_reference") or ""),
            amount=amount,
            date_approved=j.get("date_approved"),
            raw=j,
        )
