import io

import pytest
from PIL import Image

from autopruefer.app import create_app
from autopruefer.config import Config
from autopruefer.errors import LLMServiceError
from autopruefer.web_scraper import EMPTY_LISTING_TEXT

BASIC_RESPONSE = """1. GESAMTBEWERTUNG: Empfehlenswert
Gepflegtes Fahrzeug mit nachvollziehbarer Historie.

2. HAUPTRISIKEN:
- Zahnriemenwechsel steht bald an
- Leichte Korrosion an der Heckklappe

3. VERDÄCHTIGE PUNKTE:
- Serviceheft endet bei 90.000 km

4. VERHANDLUNGSTIPPS:
- Zahnriemen kostet ca. 800 €, als Abschlag fordern

5. WEITERE EMPFEHLUNGEN:
- Probefahrt mit kaltem Motor machen
"""

PREMIUM_RESPONSE = BASIC_RESPONSE + """
6. TECHNISCHE DETAILS:
- Motor: 2.0 TDI, robust bei regelmäßiger Wartung
- Getriebe: DSG, Ölwechsel alle 60.000 km

7. UNTERHALTSKOSTEN (monatlich):
- Kraftstoff: ca. 180 €
- Versicherung: 95 €
- Wartung: 60 €
- Steuer: 25 €
- Wertverlust: 250 €
- GESAMT: 610 €/Monat
Verbrauch etwa 6,2 L/100km, Versicherung 1.140 €/Jahr, Wartung 720 €/Jahr.

8. MARKTANALYSE:
- Aktueller Marktwert: 17.500 €
- Wiederverkaufswert: 58 % nach 3 Jahren

9. KONKURRENZMODELLE:
| Modell | Preis | Verbrauch |
|---|---|---|
| Skoda Octavia | 16.900 € | 5,8 L |
| Seat Leon | 15.500 € | 6,0 L |
"""


class FakeAIManager:
    """Liefert feste Antworten und merkt sich die Aufrufe"""

    def __init__(self, response=BASIC_RESPONSE, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def complete(self, system_prompt, user_prompt, images=None, max_tokens=1000, temperature=0.7):
        self.calls.append({
            'system_prompt': system_prompt,
            'user_prompt': user_prompt,
            'images': list(images or []),
            'max_tokens': max_tokens,
            'temperature': temperature,
        })
        if self.error:
            raise LLMServiceError(self.error)
        return self.response


class FakeScraper:
    def __init__(self, text=EMPTY_LISTING_TEXT):
        self.text = text
        self.urls = []

    def scrape_listing(self, url):
        self.urls.append(url)
        return self.text


def make_image(fmt='PNG', size=(64, 48), color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new('RGB', size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return make_image()


@pytest.fixture
def config(tmp_path):
    return Config(config_path=None, overrides={
        'public_base_url': 'https://autopruefer.example',
        'upload_dir': str(tmp_path / 'uploads'),
        'report_dir': str(tmp_path / 'reports'),
        'ttl_ms': 60 * 60 * 1000,
        'stripe_secret_key': 'sk_test_dummy',
        'stripe_publishable_key': 'pk_test_dummy',
        'stripe_webhook_secret': 'whsec_dummy',
        'openai_api_key': None,
        'anthropic_api_key': None,
        'ai_provider': 'openai',
        'smtp_host': '',
        'use_fallback_report': True,
        'allow_direct_analysis': False,
        'analysis_workers': 1,
    })


@pytest.fixture
def ai_manager():
    return FakeAIManager()


@pytest.fixture
def scraper():
    return FakeScraper()


@pytest.fixture
def app(config, ai_manager, scraper):
    app = create_app(config, ai_manager=ai_manager, scraper=scraper, start_sweeper=False)
    app.config['TESTING'] = True
    yield app
    app.extensions['autopruefer']['analyzer'].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions['autopruefer']
