# services/payments/registry.py
from __future__ import annotations
from dataclasses import dataclass

from flask import current_app

from services.notify import LogNotifier, Notifier
from services.payments.config import GatewayConfig
from services.payments.signature import SignatureVerifier
from services.payments.tokenizer import TokenCipher
from services.payments.webhooks import WebhookProcessor
from services.payments.wompi_client import WompiClient

EXTENSION_KEY = "payments"


@dataclass(frozen=True)
class PaymentComponents:
    config: GatewayConfig
    verifier: SignatureVerifier
    cipher: TokenCipher
    client: WompiClient
    processor: WebhookProcessor


def build_components(config: GatewayConfig, notifier: Notifier | None = None,
                     http_session=None) -> PaymentComponents:
    verifier = SignatureVerifier(config.integrity_key, config.events_key)
    return PaymentComponents(
        config=config,
        verifier=verifier,
        cipher=TokenCipher(config.token_secret),
        client=WompiClient(config, session=http_session),
        processor=WebhookProcessor(verifier, notifier or LogNotifier()),
    )


def init_app(app, config: GatewayConfig, notifier: Notifier | None = None,
             http_session=None) -> PaymentComponents:
    components = build_components(config, notifier, http_session)
    app.extensions[EXTENSION_KEY] = components
    return components


def get_components() -> PaymentComponents:
    try:
        return current_app.extensions[EXTENSION_KEY]
    except KeyError:
        raise RuntimeError("payments not initialised; call registry.init_app(app, config)")
