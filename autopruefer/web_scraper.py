import logging
import re
from typing import Dict, List, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

EMPTY_LISTING_TEXT = 'Keine Daten vom Inserat verfügbar. Bitte laden Sie Fotos hoch für die Analyse.'
MAX_LISTING_CHARS = 3000
MAX_FEATURES = 20

_PRICE_PATTERNS = [
    re.compile(r'(\d{1,3}[.,]?\d{3})\s*€'),
    re.compile(r'€\s*(\d{1,3}[.,]?\d{3})'),
    re.compile(r'EUR\s*(\d{1,3}[.,]?\d{3})'),
]


def detect_platform(url: str) -> Optional[str]:
    host = urlparse(url if '://' in url else 'https://' + url).netloc.lower()
    if 'mobile.de' in host:
        return 'mobile'
    if 'autoscout24' in host:
        return 'autoscout'
    if 'kleinanzeigen.de' in host:
        return 'kleinanzeigen'
    return None


def normalize_key(key: str) -> str:
    key = re.sub(r'[^a-z0-9äöüß]', '_', key.lower())
    return re.sub(r'_+', '_', key).strip('_')


def humanize_key(key: str) -> str:
    return ' '.join(word[:1].upper() + word[1:] for word in key.split('_') if word)


def _text(element) -> str:
    return element.get_text(' ', strip=True) if element else ''


def _first_text(soup: BeautifulSoup, *selectors: str) -> str:
    for selector in selectors:
        text = _text(soup.select_one(selector))
        if text:
            return text
    return ''


class ListingScraper:
    """
    Liest Inserate von mobile.de, AutoScout24 und Kleinanzeigen aus
    und liefert einen kurzen Klartext für den Prompt.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 10):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.session.headers.update({
            'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
            'Accept': 'text/html,application/xhtml+xml',
            'Accept-Language': 'de-DE,de;q=0.9',
            'Accept-Encoding': 'gzip, deflate',
            'Cache-Control': 'no-cache',
        })

        self.site_rules = {
            'mobile': self._parse_mobile_de,
            'autoscout': self._parse_autoscout24,
            'kleinanzeigen': self._parse_kleinanzeigen,
        }

    def scrape_listing(self, url: str) -> str:
        """
        Holt ein Inserat und formatiert es als Text.

        Args:
            url: Link zum Inserat

        Returns:
            Formatierter Text (max. 3000 Zeichen) oder EMPTY_LISTING_TEXT
        """
        platform = detect_platform(url or '')
        if not platform:
            logger.warning("Nicht unterstützte Plattform: %s", url)
            return EMPTY_LISTING_TEXT

        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.warning("Fehler beim Laden von %s: %s", url, e)
            return EMPTY_LISTING_TEXT

        try:
            soup = BeautifulSoup(response.content, 'html.parser')
            data = self.parse_html(soup, platform)
        except Exception as e:
            logger.warning("Fehler beim Parsen von %s: %s", url, e)
            return EMPTY_LISTING_TEXT

        text = self.format_listing(data)
        return text or EMPTY_LISTING_TEXT

    def parse_html(self, soup: BeautifulSoup, platform: Optional[str]) -> Dict:
        handler = self.site_rules.get(platform, self._parse_generic)
        data = handler(soup)
        if not any([data['title'], data['price'], data['description'], data['details']]):
            data = self._parse_generic(soup)
        return data

    @staticmethod
    def _empty() -> Dict:
        return {
            'title': '',
            'price': '',
            'description': '',
            'details': {},
            'features': [],
        }

    def _parse_mobile_de(self, soup: BeautifulSoup) -> Dict:
        data = self._empty()
        data['title'] = _first_text(soup, 'h1[data-testid="ad-title"]', 'h1.h2', '.g-col-12 h1')
        data['price'] = _first_text(soup, '[data-testid="prime-price"]', '.price-block .h3', '.price')
        data['description'] = _first_text(soup, '.description-text', '[data-testid="description"]')

        for item in soup.select('.key-features__item, [data-testid="key-feature"]'):
            text = _text(item)
            if 'km' in text:
                data['details']['kilometerstand'] = text
            elif re.search(r'\d{2}/\d{4}', text):
                data['details']['erstzulassung'] = text
            elif 'kW' in text or 'PS' in text:
                data['details']['leistung'] = text
            elif any(fuel in text for fuel in ('Benzin', 'Diesel', 'Elektro', 'Hybrid')):
                data['details']['kraftstoff'] = text

        for value in soup.select('.technical-data dd, [data-testid="technical-data-value"]'):
            label = value.find_previous_sibling('dt')
            if label and _text(value):
                data['details'][normalize_key(_text(label))] = _text(value)

        data['features'] = [_text(li) for li in soup.select('.features-list li, .equipment-list__item') if _text(li)]
        return data

    def _parse_autoscout24(self, soup: BeautifulSoup) -> Dict:
        data = self._empty()
        data['title'] = _first_text(soup, 'h1', '.cldt-detail-title')
        data['price'] = _first_text(soup, '.cldt-stage-price', '.cldt-price', '[data-testid="price-label"]')
        data['description'] = _first_text(soup, '.cldt-stage-description', '.description')

        for fact in soup.select('.cldt-stage-primary-keyfact'):
            label = _text(fact.select_one('.keyfact-label'))
            value = _text(fact.select_one('.keyfact-value'))
            if label and value:
                data['details'][normalize_key(label)] = value

        for label in soup.select('.cldt-data-section dt, dl dt'):
            value = label.find_next_sibling('dd')
            if value and _text(label) and _text(value):
                data['details'][normalize_key(_text(label))] = _text(value)

        data['features'] = [_text(li) for li in soup.select('.cldt-equipment-block li') if _text(li)]
        return data

    def _parse_kleinanzeigen(self, soup: BeautifulSoup) -> Dict:
        data = self._empty()
        data['title'] = _first_text(soup, '#viewad-title', 'h1[data-testid="ad-detail-header"]')
        data['price'] = _first_text(soup, '#viewad-price', '[data-testid="ad-price"]')
        data['description'] = _first_text(soup, '#viewad-description-text', '[data-testid="ad-description"]')

        for item in soup.select('.addetailslist--detail'):
            label = _text(item.select_one('.addetailslist--detail--label'))
            value = _text(item.select_one('.addetailslist--detail--value'))
            if label and value:
                data['details'][normalize_key(label)] = value

        for attribute in soup.select('[data-testid="attribute"]'):
            parts = _text(attribute).split(':')
            if len(parts) == 2:
                data['details'][normalize_key(parts[0])] = parts[1].strip()

        data['features'] = [_text(li) for li in soup.select('.tag-list__item') if _text(li)]
        return data

    def _parse_generic(self, soup: BeautifulSoup) -> Dict:
        data = self._empty()
        data['title'] = _text(soup.find('h1'))

        body_text = soup.get_text(' ', strip=True)
        for pattern in _PRICE_PATTERNS:
            match = pattern.search(body_text)
            if match:
                data['price'] = match.group(0)
                break

        for selector in ('.description', '[class*="description"]', '[id*="description"]', 'article', '.content'):
            description = _text(soup.select_one(selector))
            if len(description) > 50:
                data['description'] = description[:1000]
                break

        return data

    def format_listing(self, data: Dict) -> str:
        lines: List[str] = []
        if data.get('title'):
            lines.append(f"Titel: {data['title']}")
        if data.get('price'):
            lines.append(f"Preis: {data['price']}")

        if data.get('details'):
            lines.append('')
            lines.append('Details:')
            lines.extend(f'- {humanize_key(key)}: {value}' for key, value in data['details'].items())

        if data.get('description'):
            lines.append('')
            lines.append('Beschreibung:')
            lines.append(data['description'])

        if data.get('features'):
            lines.append('')
            lines.append('Ausstattung:')
            lines.extend(f'- {feature}' for feature in data['features'][:MAX_FEATURES])

        return '\n'.join(lines).strip()[:MAX_LISTING_CHARS]


def is_empty_listing(text: Optional[str]) -> bool:
    return not text or text == EMPTY_LISTING_TEXT
