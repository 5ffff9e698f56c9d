import json
import logging
import os
from typing import Dict, List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Preise in Cent
PLAN_PRICES = {
    'basic': 499,
    'standard': 999,
    'premium': 2499,
}

PLAN_NAMES = {
    'basic': 'Basis-Check',
    'standard': 'Standard-Analyse',
    'premium': 'Premium-Gutachten',
}

PLAN_DESCRIPTIONS = {
    'basic': 'Schnellanalyse',
    'standard': 'Detailanalyse',
    'premium': 'Vollgutachten (PDF inklusive)',
}

FALLBACK_REPORT = """1. GESAMTBEWERTUNG: Mit Vorsicht zu genießen
Die automatische Analyse war vorübergehend nicht verfügbar. Diese allgemeine Checkliste ersetzt kein Gutachten.

2. HAUPTRISIKEN:
- Unfallschäden, die im Inserat nicht angegeben sind
- Manipulierter oder nicht belegter Kilometerstand
- Rost an Schwellern, Radläufen und Unterboden

3. VERDÄCHTIGE PUNKTE:
- Preis deutlich unter dem üblichen Marktwert
- Fehlendes oder lückenhaftes Serviceheft

4. VERHANDLUNGSTIPPS:
- Anstehende Wartung (Zahnriemen, Bremsen) als Preisargument nutzen
- Fehlende TÜV-Berichte und Rechnungen ansprechen
- Bei Mängeln einen konkreten Abschlag nennen statt pauschal zu handeln

5. WEITERE EMPFEHLUNGEN:
- Probefahrt mit kaltem Motor durchführen
- Fahrzeug vor dem Kauf von einer unabhängigen Werkstatt prüfen lassen
- Fahrgestellnummer mit den Papieren abgleichen
"""


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("%s=%r ist keine Zahl, verwende %s", name, value, default)
        return default


def load_config_file(path: str = 'config.json') -> Dict:
    try:
        with open(path, 'r', encoding='utf-8') as handle:
            return json.load(handle)
    except FileNotFoundError:
        logger.info("%s nicht gefunden, verwende Umgebungsvariablen", path)
        return {}


class Config:
    """Konfiguration aus .env, Umgebungsvariablen und optional config.json"""

    def __init__(self, overrides: Optional[Dict] = None, config_path: str = 'config.json'):
        load_dotenv()
        file_config = load_config_file(config_path) if config_path else {}
        site_config = file_config.get('site_config', {})

        self.host = os.getenv('HOST', site_config.get('host', '0.0.0.0'))
        self.port = _env_int('PORT', site_config.get('port', 8080))
        self.debug = _env_bool('FLASK_DEBUG', site_config.get('debug', False))

        self.ai_provider = os.getenv('AI_PROVIDER', file_config.get('ai_provider', 'openai')).lower()
        self.openai_api_key = os.getenv('OPENAI_API_KEY') or file_config.get('openai_key')
        self.openai_api_base = os.getenv('OPENAI_API_BASE') or file_config.get('openai_api_base', 'https://api.openai.com/v1')
        self.openai_model = os.getenv('OPENAI_MODEL', 'gpt-4o')
        self.anthropic_api_key = os.getenv('ANTHROPIC_API_KEY')
        self.anthropic_model = os.getenv('ANTHROPIC_MODEL', 'claude-3-5-sonnet-20241022')
        self.llm_timeout_s = _env_int('LLM_TIMEOUT_S', 120)

        self.stripe_secret_key = os.getenv('STRIPE_SECRET_KEY', '').strip()
        self.stripe_publishable_key = os.getenv('STRIPE_PUBLISHABLE_KEY', '').strip()
        self.stripe_webhook_secret = os.getenv('STRIPE_WEBHOOK_SECRET', '').strip()
        self.plan_prices = dict(PLAN_PRICES, **file_config.get('plans', {}))

        self.public_base_url = os.getenv('PUBLIC_BASE_URL', '').strip()
        self.ttl_ms = _env_int('TTL_MS', file_config.get('ttl_ms', 60 * 60 * 1000))
        self.cleanup_interval_s = _env_int('CLEANUP_INTERVAL_S', 10 * 60)
        self.upload_dir = os.getenv('UPLOAD_DIR', os.path.join('/tmp', 'autopruefer_uploads'))
        self.report_dir = os.getenv('REPORT_DIR', os.path.join('/tmp', 'autopruefer_reports'))
        self.max_upload_bytes = _env_int('MAX_UPLOAD_BYTES', 10 * 1024 * 1024)
        self.analysis_workers = _env_int('ANALYSIS_WORKERS', 4)

        self.use_fallback_report = _env_bool('USE_FALLBACK_REPORT', True)
        self.allow_direct_analysis = _env_bool('ALLOW_DIRECT_ANALYSIS', False)

        self.smtp_host = os.getenv('SMTP_HOST', '').strip()
        self.smtp_port = _env_int('SMTP_PORT', 587)
        self.smtp_user = os.getenv('SMTP_USER', '')
        self.smtp_password = os.getenv('SMTP_PASSWORD', '')
        self.mail_from = os.getenv('MAIL_FROM', 'Autoprüfer <noreply@autopruefer.de>')

        for key, value in (overrides or {}).items():
            setattr(self, key, value)

    def missing_keys(self) -> List[str]:
        missing = []
        if not self.stripe_secret_key:
            missing.append('STRIPE_SECRET_KEY')
        if not self.stripe_publishable_key:
            missing.append('STRIPE_PUBLISHABLE_KEY')
        if not self.stripe_webhook_secret:
            missing.append('STRIPE_WEBHOOK_SECRET')
        if self.ai_provider == 'anthropic':
            if not self.anthropic_api_key:
                missing.append('ANTHROPIC_API_KEY')
        elif not self.openai_api_key:
            missing.append('OPENAI_API_KEY')
        return missing

    def log_warnings(self) -> None:
        missing = self.missing_keys()
        if missing:
            logger.error("Fehlende .env Variablen: %s", ', '.join(missing))
        if not self.public_base_url:
            logger.warning("PUBLIC_BASE_URL ist nicht gesetzt, Basis-URL wird aus den Request-Headern ermittelt")
        elif not self.public_base_url.lower().startswith(('http://', 'https://')):
            logger.warning("PUBLIC_BASE_URL ohne Schema, https:// wird vorangestellt")
