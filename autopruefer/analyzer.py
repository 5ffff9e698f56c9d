import concurrent.futures
import logging
import threading
import uuid
from typing import Dict, List, Mapping, Optional

from .config import FALLBACK_REPORT
from .errors import LLMServiceError, ValidationError
from .image_processor import ImageProcessor
from .models import (AnalysisRequest, AnalysisResult, FailedAnalysis,
                     VehicleData, normalize_plan)
from .pdf_report import generate_pdf_report
from .prompts import TEMPERATURE, build_user_prompt, get_system_prompt, max_tokens_for
from .report_parser import parse_response
from .web_scraper import is_empty_listing

logger = logging.getLogger(__name__)


class VehicleAnalyzer:
    """Inserat laden -> Prompt bauen -> LLM -> Ergebnis parsen -> PDF/Cache/E-Mail"""

    def __init__(self, ai_manager, scraper, results_cache, uploads_cache,
                 report_dir: str, ttl_ms: int, mailer=None, image_processor: ImageProcessor = None,
                 use_fallback: bool = True, workers: int = 4):
        self.ai_manager = ai_manager
        self.scraper = scraper
        self.results_cache = results_cache
        self.uploads_cache = uploads_cache
        self.report_dir = report_dir
        self.ttl_ms = ttl_ms
        self.mailer = mailer
        self.image_processor = image_processor or ImageProcessor()
        self.use_fallback = use_fallback
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=workers,
                                                              thread_name_prefix='analysis')
        self._in_flight = set()
        self._in_flight_lock = threading.Lock()

    def _listing_text(self, request: AnalysisRequest) -> str:
        if request.listing_text:
            return request.listing_text
        if not request.url:
            return ''
        text = self.scraper.scrape_listing(request.url)
        return '' if is_empty_listing(text) else text

    def _complete(self, request: AnalysisRequest, listing_text: str):
        system_prompt = get_system_prompt(request.plan)
        user_prompt = build_user_prompt(request.vehicle, listing_text, len(request.photos), request.url)
        try:
            text = self.ai_manager.complete(
                system_prompt,
                user_prompt,
                images=request.photos,
                max_tokens=max_tokens_for(request.plan),
                temperature=TEMPERATURE,
            )
        except LLMServiceError:
            if not self.use_fallback:
                raise
            logger.warning("LLM nicht erreichbar, verwende Standard-Checkliste (plan=%s)", request.plan)
            return FALLBACK_REPORT, True
        return text, False

    def analyze(self, request: AnalysisRequest, name: Optional[str] = None) -> AnalysisResult:
        listing_text = self._listing_text(request)
        text, fallback = self._complete(request, listing_text)

        result = parse_response(text, request.plan)
        result.fallback = fallback
        result.stamp(self.ttl_ms)

        if result.premium:
            try:
                result.pdf_path = generate_pdf_report(request.vehicle, result, self.report_dir,
                                                      name or uuid.uuid4().hex)
            except Exception:
                logger.exception("PDF-Erstellung fehlgeschlagen")

        logger.info("Analyse abgeschlossen: plan=%s verdict=%s photos=%d url=%s fallback=%s",
                    result.plan, result.verdict, len(request.photos), bool(request.url), fallback)
        return result

    def photos_for_upload(self, upload_id: Optional[str]) -> List[str]:
        if not upload_id:
            return []
        entry = self.uploads_cache.get(upload_id)
        if not entry:
            logger.warning("Upload %s nicht mehr vorhanden", upload_id)
            return []
        try:
            return [self.image_processor.process_file(entry['file_path'])]
        except (OSError, ValidationError) as e:
            logger.warning("Upload %s nicht lesbar: %s", upload_id, e)
            return []

    def request_from_session(self, session: Mapping) -> AnalysisRequest:
        metadata = session.get('metadata') or {}
        customer = session.get('customer_details') or {}
        vehicle = VehicleData.from_mapping(metadata)
        return AnalysisRequest(
            plan=metadata.get('plan'),
            vehicle=vehicle,
            photos=self.photos_for_upload(metadata.get('uploadId')),
            url=vehicle.url,
            customer_email=customer.get('email') or session.get('customer_email') or '',
        )

    def analyze_from_session(self, session: Mapping, result_url: Optional[str] = None) -> AnalysisResult:
        """Analyse nach erfolgreicher Zahlung; Ergebnis liegt danach unter session['id'] im Cache"""
        session_id = session['id']
        request = self.request_from_session(session)
        logger.info("Starte Analyse für Session %s (plan=%s)", session_id, request.plan)

        result = self.analyze(request, name=session_id)
        self.results_cache.set(session_id, result, self.ttl_ms)

        if self.mailer and request.customer_email:
            self.mailer.send_report(request.customer_email, request.vehicle, result, result_url)
        return result

    def _run_session(self, session: Dict, result_url: Optional[str]) -> None:
        session_id = session['id']
        try:
            self.analyze_from_session(session, result_url)
        except Exception:
            logger.exception("Analyse-Fehler für Session %s", session_id)
            plan = normalize_plan((session.get('metadata') or {}).get('plan'))
            self.results_cache.set(session_id, FailedAnalysis(plan=plan), self.ttl_ms)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(session_id)

    def submit_session(self, session: Dict,
                       result_url: Optional[str] = None) -> Optional[concurrent.futures.Future]:
        """Startet die Analyse im Hintergrund, der Webhook antwortet sofort

        Stripe stellt Webhooks mehrfach zu; pro Session läuft höchstens eine
        Analyse. Liefert None, wenn die Session schon bearbeitet wird oder ein
        Ergebnis im Cache liegt.
        """
        session_id = session['id']
        with self._in_flight_lock:
            if session_id in self._in_flight or self.results_cache.get(session_id) is not None:
                logger.info("Session %s bereits analysiert oder in Arbeit, Zustellung ignoriert", session_id)
                return None
            self._in_flight.add(session_id)
        try:
            return self.executor.submit(self._run_session, session, result_url)
        except RuntimeError:
            with self._in_flight_lock:
                self._in_flight.discard(session_id)
            raise

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
