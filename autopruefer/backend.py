import logging
import os
import uuid
from typing import Optional

from flask import jsonify, request, send_file
from werkzeug.utils import secure_filename

from .errors import GoneError, NotFoundError, ValidationError
from .models import AnalysisRequest, AnalysisResult, FailedAnalysis, VehicleData
from .pdf_report import WEASYPRINT_AVAILABLE
from .validator import (validate_analysis_input, validate_checkout, validate_photo_refs,
                        validate_photos, validate_plan, validate_url)

logger = logging.getLogger(__name__)


def resolve_base_url(public_base_url: Optional[str], headers, fallback: str = '') -> str:
    """PUBLIC_BASE_URL hat Vorrang, sonst Proxy-Header bzw. Host"""
    if public_base_url:
        base = public_base_url.strip()
        if not base.lower().startswith(('http://', 'https://')):
            base = 'https://' + base
        return base.rstrip('/')

    proto = (headers.get('X-Forwarded-Proto') or '').split(',')[0].strip() or 'http'
    host = (headers.get('X-Forwarded-Host') or '').split(',')[0].strip() or headers.get('Host')
    if host:
        return f'{proto}://{host}'
    return fallback.rstrip('/')


class Backend_Api:
    def __init__(self, app, config, uploads_cache, results_cache, analyzer, stripe_manager,
                 image_processor) -> None:
        self.app = app
        self.config = config
        self.uploads_cache = uploads_cache
        self.results_cache = results_cache
        self.analyzer = analyzer
        self.stripe_manager = stripe_manager
        self.image_processor = image_processor

        self.routes = {
            '/api/config': {
                'function': self._get_config,
                'methods': ['GET']
            },
            '/api/pricing': {
                'function': self._get_pricing,
                'methods': ['GET']
            },
            '/api/health': {
                'function': self._health,
                'methods': ['GET']
            },
            # Foto-Upload vor dem Checkout
            '/api/upload': {
                'function': self._upload,
                'methods': ['POST']
            },
            '/uploads/<upload_id>': {
                'function': self._serve_upload,
                'methods': ['GET']
            },
            # Zahlung
            '/api/create-checkout': {
                'function': self._create_checkout_session,
                'methods': ['POST']
            },
            '/api/stripe/webhook': {
                'function': self._stripe_webhook,
                'methods': ['POST']
            },
            # Ergebnis-Polling
            '/api/result': {
                'function': self._get_result,
                'methods': ['GET']
            },
            '/reports/<session_id>': {
                'function': self._download_report,
                'methods': ['GET']
            },
            '/api/analyze': {
                'function': self._analyze,
                'methods': ['POST']
            },
        }

    def _base_url(self) -> str:
        return resolve_base_url(self.config.public_base_url, request.headers, request.host_url)

    def _get_config(self):
        return jsonify({
            'success': True,
            'stripePublishableKey': self.config.stripe_publishable_key,
            'locale': 'de',
        })

    def _get_pricing(self):
        return jsonify(dict(self.stripe_manager.get_pricing_info(), success=True))

    def _health(self):
        return jsonify({
            'status': 'ok',
            'uploads': len(self.uploads_cache),
            'results': len(self.results_cache),
            'stripe': self.stripe_manager.configured,
            'aiProvider': self.config.ai_provider,
            'pdf': WEASYPRINT_AVAILABLE,
            'mail': bool(self.analyzer.mailer and self.analyzer.mailer.enabled),
        })

    def _upload(self):
        photo = request.files.get('photo')
        if photo is None or not photo.filename:
            raise ValidationError('Keine Datei hochgeladen', field='photo')

        data = photo.read()
        self.image_processor.validate(data, photo.filename)

        upload_id = uuid.uuid4().hex
        ext = os.path.splitext(secure_filename(photo.filename))[1].lower()
        os.makedirs(self.config.upload_dir, exist_ok=True)
        file_path = os.path.join(self.config.upload_dir, upload_id + ext)
        with open(file_path, 'wb') as handle:
            handle.write(data)

        expires_at = self.uploads_cache.set(upload_id, {
            'file_path': file_path,
            'filename': photo.filename,
            'mimetype': photo.mimetype,
        }, self.config.ttl_ms)
        logger.info("Upload %s gespeichert (%d Bytes)", upload_id, len(data))

        return jsonify({
            'success': True,
            'uploadId': upload_id,
            'url': f'{self._base_url()}/uploads/{upload_id}',
            'expiresAt': int(expires_at * 1000),
        })

    def _serve_upload(self, upload_id):
        entry = self.uploads_cache.get(upload_id)
        if not entry:
            raise NotFoundError('Upload nicht gefunden oder abgelaufen')
        if not os.path.exists(entry['file_path']):
            raise GoneError('Datei abgelaufen')
        return send_file(entry['file_path'], mimetype=entry.get('mimetype') or 'image/jpeg')

    def _create_checkout_session(self):
        data = request.get_json(silent=True) or {}
        plan = validate_plan(data.get('plan'))
        vehicle = validate_checkout(data.get('vehicleData'))

        upload_id = data.get('uploadId') or ''
        if upload_id and self.uploads_cache.get(upload_id) is None:
            raise ValidationError('Upload nicht gefunden oder abgelaufen', field='uploadId')

        result = self.stripe_manager.create_checkout_session(plan, vehicle, upload_id, self._base_url())
        return jsonify(result)

    def _stripe_webhook(self):
        payload = request.get_data()
        sig_header = request.headers.get('Stripe-Signature')
        event = self.stripe_manager.construct_event(payload, sig_header)

        session = (event.get('data') or {}).get('object') or {}
        result_url = None
        if session.get('id'):
            result_url = f"{self._base_url()}/?success=true&session_id={session['id']}"

        logger.info("Webhook empfangen: %s", event.get('type'))
        return jsonify(self.stripe_manager.handle_event(event, result_url))

    def _result_payload(self, key: str, result: AnalysisResult) -> dict:
        payload = dict(result.to_dict(), status='ready', success=True)
        payload['pdfUrl'] = f'{self._base_url()}/reports/{key}' if result.pdf_path else None
        return payload

    def _get_result(self):
        session_id = request.args.get('session_id', '').strip()
        if not session_id:
            raise ValidationError('session_id fehlt', field='session_id')

        result = self.results_cache.get(session_id)
        if result is None:
            return jsonify({'success': True, 'status': 'pending'})
        if isinstance(result, FailedAnalysis):
            return jsonify(dict(result.to_dict(), success=False))
        return jsonify(self._result_payload(session_id, result))

    def _download_report(self, session_id):
        result = self.results_cache.get(session_id)
        if not isinstance(result, AnalysisResult) or not result.pdf_path:
            raise NotFoundError('Gutachten nicht gefunden oder abgelaufen')
        if not os.path.exists(result.pdf_path):
            raise GoneError('Gutachten abgelaufen')
        return send_file(result.pdf_path, mimetype='application/pdf', as_attachment=True,
                         download_name=os.path.basename(result.pdf_path))

    def _analyze(self):
        """Synchrone Analyse ohne Zahlung (nur Entwicklung/Test)"""
        if not self.config.allow_direct_analysis:
            raise NotFoundError('Direktanalyse ist deaktiviert')

        if request.files:
            data = request.form
            vehicle = VehicleData.from_mapping(data)
            photos = [self.image_processor.process(f.read(), f.filename)
                      for f in validate_photos(request.files.getlist('photos'))]
        else:
            data = request.get_json(silent=True) or {}
            vehicle = VehicleData.from_mapping(data.get('vehicleData'))
            photos = validate_photo_refs(data.get('photos'))

        plan = validate_plan(data.get('plan') or 'basic')
        url = validate_url(data.get('url') or vehicle.url)
        validate_analysis_input(url, photos)

        analysis_id = uuid.uuid4().hex
        analysis = AnalysisRequest(plan=plan, vehicle=vehicle, photos=photos, url=url)
        result = self.analyzer.analyze(analysis, name=analysis_id)
        self.results_cache.set(analysis_id, result, self.config.ttl_ms)

        return jsonify(dict(self._result_payload(analysis_id, result), analysisId=analysis_id))
