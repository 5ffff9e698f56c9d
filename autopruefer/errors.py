import logging
from typing import Dict, Optional

from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AutopruferError(Exception):
    """Basisklasse für alle fachlichen Fehler"""

    status_code = 500
    default_message = 'Ein interner Fehler ist aufgetreten'

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.field = field

    def to_dict(self) -> Dict:
        payload = {'success': False, 'error': self.message}
        if self.field:
            payload['field'] = self.field
        return payload


class ValidationError(AutopruferError):
    status_code = 400
    default_message = 'Ungültige Eingabe'


class NotFoundError(AutopruferError):
    status_code = 404
    default_message = 'Nicht gefunden'


class GoneError(AutopruferError):
    status_code = 410
    default_message = 'Datei abgelaufen'


class WebhookSignatureError(AutopruferError):
    status_code = 400
    default_message = 'Webhook-Signatur ungültig'


class PaymentError(AutopruferError):
    status_code = 502
    default_message = 'Fehler beim Erstellen der Zahlungssitzung'


class LLMServiceError(AutopruferError):
    """Fehler beim Aufruf des Sprachmodells (Timeout, Quota, leere Antwort)"""

    status_code = 502
    default_message = 'Analyse fehlgeschlagen'


def register_error_handlers(app) -> None:
    """Wandelt Ausnahmen in JSON-Antworten {'success': False, 'error': ...} um"""

    @app.errorhandler(AutopruferError)
    def _handle_app_error(error: AutopruferError):
        if error.status_code >= 500:
            logger.error("%s: %s", type(error).__name__, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(413)
    def _handle_too_large(error):
        return jsonify({'success': False, 'error': 'Datei ist zu groß (max. 10MB)'}), 413

    @app.errorhandler(404)
    def _handle_not_found(error):
        return jsonify({'success': False, 'error': 'Nicht gefunden'}), 404

    @app.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({'success': False, 'error': error.description}), error.code
        logger.exception("Unerwarteter Fehler: %s", error)
        return jsonify({'success': False, 'error': 'Serverfehler'}), 500
