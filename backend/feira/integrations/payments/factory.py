from __future__ import annotations

import os

from feira.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from feira.integrations.payments.base import PaymentsProvider
from feira.integrations.payments.mercadopago_provider import MercadoPagoPaymentsProvider
from feira.integrations.payments.mock_provider import MockPaymentsProvider


def _provider_name(config) -> str:
    configured = (config.get("PAYMENTS_PROVIDER") or "").strip().lower()
    if configured:
        return configured
    if (os.getenv("MERCADOPAGO_ACCESS_TOKEN") or "").strip():
        return "mercadopago"
    return "mock"


def build_payments_provider(config) -> PaymentsProvider:
    provider = _provider_name(config)

    if provider == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:payments")

    if provider == "mock":
        if (config.get("FEIRA_ENV") or "dev") in ("prod", "production"):
            raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:mock payments in production")
        return MockPaymentsProvider()

    if provider != "mercadopago":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    access_token = (os.getenv("MERCADOPAGO_ACCESS_TOKEN") or "").strip()
    if not access_token:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing MERCADOPAGO_ACCESS_TOKEN")

    timeout = float(config.get("MERCADOPAGO_TIMEOUT_SECONDS") or 10)
    return MercadoPagoPaymentsProvider(access_token=access_token, timeout=timeout)


def payment_health(config) -> dict:
    provider = _provider_name(config)
    missing = []
    if provider == "mercadopago":
        if not (os.getenv("MERCADOPAGO_ACCESS_TOKEN") or "").strip():
            missing.append("MERCADOPAGO_ACCESS_TOKEN")
        if not (config.get("BASE_URL") or "").strip():
            missing.append("BASE_URL")
    if provider == "disabled":
        status = "disabled"
    elif provider not in ("mock", "mercadopago"):
        status = "misconfigured"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {
        "status": status,
        "provider": provider,
        "missing": missing,
        "webhook_signature": bool((os.getenv("MERCADOPAGO_WEBHOOK_SECRET") or "").strip()),
    }
