# services/payments/wompi_client.py
"""
Thin Wompi REST client.

Every call is authenticated with the merchant private key as a bearer token,
sends/receives JSON and is bounded by GatewayConfig.timeout. Failures are
classified, never retried here:
  - non-2xx answer           -> UpstreamError(status_code, error body)
  - 2xx with unusable body   -> UpstreamError(502, reason)
  - connection error/timeout -> TransportError
Retrying is the caller's decision (webhooks rely on the gateway's own
redelivery).
"""

from __future__ import annotations
import logging
from typing import Any, Dict

import requests

from services.metrics import GATEWAY_CALLS
from services.payments.base import AcceptanceTokens
from services.payments.config import GatewayConfig
from services.payments.errors import TransportError, UpstreamError

logger = logging.getLogger(__name__)

# status for answers that arrived but could not be used
BAD_GATEWAY = 502


class WompiClient:
    def __init__(self, config: GatewayConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.base_url = config.base_url
        self.timeout = config.timeout
        self.session = session or requests.Session()
        self.headers = self._build_session_headers()

    def _build_session_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.private_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _build_url(self, resource: str) -> str:
        return f"{self.base_url}/{resource.lstrip('/')}"

    def _request(self, op: str, method: str, resource: str,
                 body: Dict[str, Any] | None = None) -> Dict[str, Any]:
        url = self._build_url(resource)
        try:
            r = self.session.request(method, url, json=body, headers=self.headers,
                                     timeout=self.timeout)
        except requests.RequestException as exc:
            GATEWAY_CALLS.labels(op=op, outcome="transport_error").inc()
            logger.warning("Wompi %s %s failed: %s", method, resource, exc)
            raise TransportError(f"{op}: {exc.__class__.__name__}") from exc

        try:
            js = r.json()
        except ValueError:
            js = None

        if not 200 <= r.status_code < 300:
            GATEWAY_CALLS.labels(op=op, outcome="upstream_error").inc()
            err_body = js.get("error", js) if isinstance(js, dict) else (r.text or None)
            logger.warning("Wompi %s answered HTTP %s", op, r.status_code)
            raise UpstreamError(r.status_code, err_body)

        if not isinstance(js, dict):
            GATEWAY_CALLS.labels(op=op, outcome="upstream_error").inc()
            raise UpstreamError(BAD_GATEWAY, {"reason": "non-JSON response"})

        GATEWAY_CALLS.labels(op=op, outcome="ok").inc()
        return js

    # ----- public ---------------------------------------------------------

    def fetch_acceptance_tokens(self) -> AcceptanceTokens:
        js = self._request("acceptance_tokens", "GET",
                           f"merchants/{self.config.public_key}")
        data = js.get("data") or {}
        try:
            return AcceptanceTokens(
                presigned_acceptance=data["presigned_acceptance"]["acceptance_token"],
                presigned_personal_data_auth=data["presigned_personal_data_auth"]["acceptance_token"],
            )
        except (KeyError, TypeError):
            raise UpstreamError(BAD_GATEWAY, {"reason": "merchant payload without acceptance tokens"})

    def create_payment_source(self, type: str, token: str | None, description: str | None,
                              customer_email: str | None,
                              acceptance_tokens: AcceptanceTokens) -> Dict[str, Any]:
        """Returns the gateway's `data` object; its `id` is the plaintext source id."""
        js = self._request("payment_sources", "POST", "payment_sources", {
            "type": type,
            "token": token,
            "payment_description": description,
            "customer_email": customer_email,
            "acceptance_token": acceptance_tokens.presigned_acceptance,
            "accept_personal_auth": acceptance_tokens.presigned_personal_data_auth,
        })
        data = js.get("data")
        if not isinstance(data, dict) or "id" not in data:
            raise UpstreamError(BAD_GATEWAY, {"reason": "payment source payload without id"})
        return data

    def create_transaction(self, *, amount_in_cents: int, currency: str, reference: str,
                           customer_email: str, payment_source_id: str,
                           signature: str) -> Dict[str, Any]:
        """Charge a stored payment source; payment_source_id must be the plaintext id."""
        js = self._request("transactions", "POST", "transactions", {
            "amount_in_cents": amount_in_cents,
            "currency": currency,
            "reference": reference,
            "customer_email": customer_email,
            "payment_source_id": payment_source_id,
            "payment_method": {"installments": 1},
            "signature": signature,
        })
        return js.get("data") or {}
