import json
import logging
from typing import Dict, Optional
from urllib.parse import urljoin

import stripe

from .config import PLAN_DESCRIPTIONS, PLAN_NAMES
from .errors import PaymentError, ValidationError, WebhookSignatureError
from .models import PLANS, VehicleData

logger = logging.getLogger(__name__)

PAID_STATUSES = ('paid', 'no_payment_required')


class StripeManager:
    """Einmalzahlung per Stripe Checkout und Webhook-Verarbeitung"""

    def __init__(self, secret_key: str = None, webhook_secret: str = None,
                 prices: Optional[Dict[str, int]] = None, analyzer=None, uploads_cache=None):
        stripe.api_key = secret_key
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.prices = prices or {}
        self.analyzer = analyzer
        self.uploads_cache = uploads_cache

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def create_checkout_session(self, plan: str, vehicle: VehicleData, upload_id: str,
                                base_url: str) -> Dict:
        """Erstellt die Checkout-Sitzung; Fahrzeugdaten reisen in den Metadaten mit"""
        if plan not in PLANS or plan not in self.prices:
            raise ValidationError('Ungültiger Plan.', field='plan')
        if not self.configured:
            raise PaymentError('Stripe ist nicht konfiguriert (STRIPE_SECRET_KEY fehlt).')

        metadata = dict(vehicle.to_metadata(), plan=plan, uploadId=upload_id or '')
        try:
            session = stripe.checkout.Session.create(
                mode='payment',
                payment_method_types=['card'],
                locale='de',
                line_items=[{
                    'price_data': {
                        'currency': 'eur',
                        'product_data': {
                            'name': f'Autoprüfer {PLAN_NAMES[plan]}',
                            'description': PLAN_DESCRIPTIONS[plan],
                        },
                        'unit_amount': self.prices[plan],
                    },
                    'quantity': 1,
                }],
                success_url=urljoin(base_url + '/', '?success=true&session_id={CHECKOUT_SESSION_ID}'),
                cancel_url=urljoin(base_url + '/', '?canceled=true'),
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error("Checkout-Fehler: %s", e)
            raise PaymentError() from e

        logger.info("Checkout-Session erstellt: %s (plan=%s, amount=%d)", session.id, plan, self.prices[plan])
        return {
            'success': True,
            'sessionId': session.id,
            'url': session.url,
        }

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Dict:
        """Prüft die Signatur und liefert das Event als einfaches dict"""
        if not self.webhook_secret:
            raise PaymentError('STRIPE_WEBHOOK_SECRET fehlt.')
        if not sig_header:
            raise WebhookSignatureError('Missing stripe-signature header')
        try:
            stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except ValueError as e:
            raise WebhookSignatureError(f'Invalid payload: {e}') from e
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook-Signatur ungültig: %s", e)
            raise WebhookSignatureError(f'Invalid signature: {e}') from e
        return json.loads(payload)

    def handle_event(self, event: Dict, result_url: Optional[str] = None) -> Dict:
        """Stripe erwartet eine schnelle 2xx-Antwort, die Analyse läuft im Hintergrund"""
        event_type = event.get('type')
        session = (event.get('data') or {}).get('object') or {}

        if event_type == 'checkout.session.completed':
            if session.get('payment_status') in PAID_STATUSES:
                self._handle_successful_payment(session, result_url)
            else:
                logger.info("Session %s abgeschlossen, Zahlung ausstehend (%s)",
                            session.get('id'), session.get('payment_status'))

        elif event_type == 'checkout.session.async_payment_succeeded':
            self._handle_successful_payment(session, result_url)

        elif event_type == 'checkout.session.expired':
            self._handle_expired_session(session)

        else:
            logger.info("Unbehandelter Event-Typ %s", event_type)

        return {'received': True}

    def _handle_successful_payment(self, session: Dict, result_url: Optional[str]) -> None:
        logger.info("Zahlung erfolgreich: session=%s plan=%s amount=%s",
                    session.get('id'), (session.get('metadata') or {}).get('plan'), session.get('amount_total'))
        if self.analyzer is None:
            logger.error("Kein Analyzer konfiguriert, Session %s wird nicht analysiert", session.get('id'))
            return
        self.analyzer.submit_session(session, result_url)

    def _handle_expired_session(self, session: Dict) -> None:
        upload_id = (session.get('metadata') or {}).get('uploadId')
        logger.warning("Checkout-Session abgelaufen: %s", session.get('id'))
        if upload_id and self.uploads_cache is not None:
            self.uploads_cache.delete(upload_id)

    def get_pricing_info(self) -> Dict:
        """Preise für die Anzeige auf der Website"""
        return {
            'currency': 'eur',
            'plans': [
                {
                    'id': plan,
                    'name': PLAN_NAMES[plan],
                    'description': PLAN_DESCRIPTIONS[plan],
                    'price': self.prices[plan] / 100,
                    'amount': self.prices[plan],
                    'pdf': plan == 'premium',
                    'popular': plan == 'standard',
                }
                for plan in PLANS if plan in self.prices
            ],
        }
