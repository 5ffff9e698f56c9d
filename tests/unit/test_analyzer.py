import threading

import pytest

from autopruefer import analyzer as analyzer_module
from autopruefer.analyzer import VehicleAnalyzer
from autopruefer.errors import LLMServiceError
from autopruefer.models import (VERDICT_CAUTION, VERDICT_RECOMMENDED,
                                AnalysisRequest, FailedAnalysis, VehicleData)
from autopruefer.ttl_cache import TTLCache
from tests.conftest import PREMIUM_RESPONSE, FakeAIManager, FakeScraper, make_image

TTL_MS = 60_000


class FakeMailer:
    enabled = True

    def __init__(self):
        self.sent = []

    def send_report(self, recipient, vehicle, result, result_url=None):
        self.sent.append((recipient, vehicle, result, result_url))
        return True


@pytest.fixture
def caches():
    return TTLCache('uploads'), TTLCache('results')


def make_analyzer(caches, tmp_path, ai_manager=None, scraper=None, mailer=None, use_fallback=True):
    uploads, results = caches
    return VehicleAnalyzer(
        ai_manager=ai_manager or FakeAIManager(),
        scraper=scraper or FakeScraper(),
        results_cache=results,
        uploads_cache=uploads,
        report_dir=str(tmp_path / 'reports'),
        ttl_ms=TTL_MS,
        mailer=mailer,
        use_fallback=use_fallback,
        workers=1,
    )


def session_event_object(plan='standard', upload_id='', email='kaeufer@example.de'):
    return {
        'id': 'cs_test_123',
        'payment_status': 'paid',
        'customer_details': {'email': email},
        'metadata': {
            'plan': plan,
            'brand': 'VW',
            'model': 'Golf',
            'year': '2016',
            'mileage': '125000',
            'uploadId': upload_id,
            'url': '',
        },
    }


def test_analyze_uses_plan_prompt_and_tokens(caches, tmp_path):
    ai = FakeAIManager()
    analyzer = make_analyzer(caches, tmp_path, ai_manager=ai)

    result = analyzer.analyze(AnalysisRequest(plan='standard', vehicle=VehicleData(brand='VW', model='Golf')))

    assert result.verdict == VERDICT_RECOMMENDED
    assert result.plan == 'standard'
    assert result.fallback is False
    assert result.expires_at == pytest.approx(result.created_at + TTL_MS / 1000)
    assert ai.calls[0]['max_tokens'] == 2000
    assert ai.calls[0]['temperature'] == 0.7
    assert '- Marke/Modell: VW Golf' in ai.calls[0]['user_prompt']


def test_listing_is_scraped_for_url(caches, tmp_path):
    ai = FakeAIManager()
    scraper = FakeScraper('Titel: VW Golf\nPreis: 12.500 €')
    analyzer = make_analyzer(caches, tmp_path, ai_manager=ai, scraper=scraper)

    analyzer.analyze(AnalysisRequest(url='https://suchen.mobile.de/1'))

    assert scraper.urls == ['https://suchen.mobile.de/1']
    assert 'Inseratstext:\nTitel: VW Golf' in ai.calls[0]['user_prompt']


def test_empty_scrape_is_not_sent_as_listing(caches, tmp_path):
    ai = FakeAIManager()
    analyzer = make_analyzer(caches, tmp_path, ai_manager=ai)

    analyzer.analyze(AnalysisRequest(url='https://example.com/auto'))

    assert 'Inseratstext' not in ai.calls[0]['user_prompt']


def test_llm_failure_uses_fallback_report(caches, tmp_path):
    analyzer = make_analyzer(caches, tmp_path, ai_manager=FakeAIManager(error='Timeout'))

    result = analyzer.analyze(AnalysisRequest(plan='basic'))

    assert result.fallback is True
    assert result.verdict == VERDICT_CAUTION
    assert result.risks


def test_llm_failure_without_fallback_raises(caches, tmp_path):
    analyzer = make_analyzer(caches, tmp_path, ai_manager=FakeAIManager(error='Timeout'), use_fallback=False)
    with pytest.raises(LLMServiceError):
        analyzer.analyze(AnalysisRequest(plan='basic'))


def test_premium_generates_pdf(caches, tmp_path, monkeypatch):
    calls = []

    def fake_pdf(vehicle, result, output_dir, name):
        calls.append(name)
        return str(tmp_path / f'Autopruefer-{name}.pdf')

    monkeypatch.setattr(analyzer_module, 'generate_pdf_report', fake_pdf)
    analyzer = make_analyzer(caches, tmp_path, ai_manager=FakeAIManager(PREMIUM_RESPONSE))

    result = analyzer.analyze(AnalysisRequest(plan='premium'), name='cs_1')

    assert calls == ['cs_1']
    assert result.pdf_path.endswith('Autopruefer-cs_1.pdf')
    assert result.monthly_costs['total'] == 610


def test_pdf_failure_does_not_fail_analysis(caches, tmp_path, monkeypatch):
    def broken_pdf(*args, **kwargs):
        raise OSError('pango fehlt')

    monkeypatch.setattr(analyzer_module, 'generate_pdf_report', broken_pdf)
    analyzer = make_analyzer(caches, tmp_path, ai_manager=FakeAIManager(PREMIUM_RESPONSE))

    result = analyzer.analyze(AnalysisRequest(plan='premium'))
    assert result.pdf_path is None


def test_basic_plan_has_no_pdf(caches, tmp_path, monkeypatch):
    calls = []
    monkeypatch.setattr(analyzer_module, 'generate_pdf_report', lambda *args: calls.append(args))
    analyzer = make_analyzer(caches, tmp_path, ai_manager=FakeAIManager(PREMIUM_RESPONSE))
    assert analyzer.analyze(AnalysisRequest(plan='basic')).pdf_path is None
    assert calls == []


def test_analyze_from_session_stores_result_and_mails(caches, tmp_path):
    uploads, results = caches
    photo = tmp_path / 'foto.png'
    photo.write_bytes(make_image())
    uploads.set('up1', {'file_path': str(photo)}, TTL_MS)

    ai = FakeAIManager()
    mailer = FakeMailer()
    analyzer = make_analyzer(caches, tmp_path, ai_manager=ai, mailer=mailer)

    result = analyzer.analyze_from_session(session_event_object(upload_id='up1'), 'https://x/?session_id=cs_test_123')

    assert results.get('cs_test_123') is result
    assert len(ai.calls[0]['images']) == 1
    assert ai.calls[0]['images'][0].startswith('data:image/jpeg;base64,')
    assert 'Es wurden 1 Fotos' in ai.calls[0]['user_prompt']
    recipient, vehicle, mailed, url = mailer.sent[0]
    assert recipient == 'kaeufer@example.de'
    assert vehicle.title == 'VW Golf'
    assert mailed is result
    assert url.endswith('session_id=cs_test_123')


def test_missing_upload_is_skipped(caches, tmp_path):
    ai = FakeAIManager()
    analyzer = make_analyzer(caches, tmp_path, ai_manager=ai)

    analyzer.analyze_from_session(session_event_object(upload_id='abgelaufen'))

    assert ai.calls[0]['images'] == []


def test_submit_session_runs_in_background(caches, tmp_path):
    _, results = caches
    analyzer = make_analyzer(caches, tmp_path)

    analyzer.submit_session(session_event_object()).result(timeout=5)
    analyzer.shutdown()

    assert results.get('cs_test_123').verdict == VERDICT_RECOMMENDED


def test_failed_background_analysis_is_stored(caches, tmp_path):
    _, results = caches
    analyzer = make_analyzer(caches, tmp_path, ai_manager=FakeAIManager(error='Quota'), use_fallback=False)

    analyzer.submit_session(session_event_object(plan='premium')).result(timeout=5)
    analyzer.shutdown()

    failed = results.get('cs_test_123')
    assert isinstance(failed, FailedAnalysis)
    assert failed.to_dict()['status'] == 'failed'
    assert failed.plan == 'premium'



class BlockingAIManager(FakeAIManager):
    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def complete(self, *args, **kwargs):
        self.release.wait(timeout=5)
        return super().complete(*args, **kwargs)


def test_session_is_analyzed_once(caches, tmp_path):
    ai = BlockingAIManager()
    mailer = FakeMailer()
    analyzer = make_analyzer(caches, tmp_path, ai_manager=ai, mailer=mailer)

    future = analyzer.submit_session(session_event_object())
    assert analyzer.submit_session(session_event_object()) is None

    ai.release.set()
    future.result(timeout=5)
    assert analyzer.submit_session(session_event_object()) is None
    analyzer.shutdown()

    assert len(ai.calls) == 1
    assert len(mailer.sent) == 1
