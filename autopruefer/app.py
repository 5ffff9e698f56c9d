import logging
import os

from flask import Flask
from flask_cors import CORS

from .ai_providers import AIProviderManager
from .analyzer import VehicleAnalyzer
from .backend import Backend_Api
from .config import Config
from .errors import register_error_handlers
from .image_processor import ImageProcessor
from .mailer import ReportMailer
from .stripe_manager import StripeManager
from .ttl_cache import CacheSweeper, TTLCache
from .web_scraper import ListingScraper

logger = logging.getLogger(__name__)


def _remove_upload_file(upload_id, entry):
    path = (entry or {}).get('file_path')
    if path and os.path.exists(path):
        os.remove(path)
        logger.debug("Upload-Datei %s entfernt", path)


def _remove_report_file(session_id, result):
    path = getattr(result, 'pdf_path', None)
    if path and os.path.exists(path):
        os.remove(path)
        logger.debug("Gutachten %s entfernt", path)


def create_app(config: Config = None, ai_manager=None, scraper=None, mailer=None,
               start_sweeper: bool = True) -> Flask:
    config = config or Config()
    config.log_warnings()

    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = config.max_upload_bytes
    CORS(app)
    register_error_handlers(app)

    uploads_cache = TTLCache('uploads', on_expire=_remove_upload_file)
    results_cache = TTLCache('results', on_expire=_remove_report_file)

    image_processor = ImageProcessor(max_file_size=config.max_upload_bytes)
    analyzer = VehicleAnalyzer(
        ai_manager=ai_manager or AIProviderManager.from_config(config),
        scraper=scraper or ListingScraper(),
        results_cache=results_cache,
        uploads_cache=uploads_cache,
        report_dir=config.report_dir,
        ttl_ms=config.ttl_ms,
        mailer=mailer if mailer is not None else ReportMailer.from_config(config),
        image_processor=image_processor,
        use_fallback=config.use_fallback_report,
        workers=config.analysis_workers,
    )
    stripe_manager = StripeManager(
        secret_key=config.stripe_secret_key,
        webhook_secret=config.stripe_webhook_secret,
        prices=config.plan_prices,
        analyzer=analyzer,
        uploads_cache=uploads_cache,
    )

    backend_api = Backend_Api(app, config, uploads_cache, results_cache, analyzer,
                              stripe_manager, image_processor)
    for route in backend_api.routes:
        app.add_url_rule(
            route,
            view_func=backend_api.routes[route]['function'],
            methods=backend_api.routes[route]['methods'],
        )

    sweeper = CacheSweeper([uploads_cache, results_cache], interval_s=config.cleanup_interval_s)
    if start_sweeper:
        sweeper.start()

    app.extensions['autopruefer'] = {
        'config': config,
        'uploads_cache': uploads_cache,
        'results_cache': results_cache,
        'analyzer': analyzer,
        'stripe_manager': stripe_manager,
        'sweeper': sweeper,
    }
    return app
