"""
Zerlegt die Freitext-Antwort des Sprachmodells in ein AnalysisResult.

Die Antwort folgt (hoffentlich) dem Schema aus prompts.py:

    1. GESAMTBEWERTUNG: Nicht empfehlenswert
    Rahmenschaden im Bereich der Radaufhängung.

    2. HAUPTRISIKEN:
    - Rahmenschaden sichtbar
    ...

Jede Überschrift "<Zahl>. <GROSSBUCHSTABEN>:" beginnt einen Abschnitt, der bis
zur nächsten Überschrift oder zum Textende reicht. Fehlende oder kaputte
Abschnitte ergeben leere Felder, niemals eine Ausnahme.
"""

import re
from typing import Dict, List, Optional

from .models import (COST_KEYS, VERDICT_CAUTION, VERDICT_NOT_RECOMMENDED,
                     VERDICT_RECOMMENDED, AnalysisResult, is_premium,
                     normalize_plan)

SECTION_SUMMARY = 'GESAMTBEWERTUNG'
SECTION_RISKS = 'HAUPTRISIKEN'
SECTION_SUSPICIOUS = 'VERDÄCHTIGE PUNKTE'
SECTION_NEGOTIATION = 'VERHANDLUNGSTIPPS'
SECTION_RECOMMENDATIONS = 'WEITERE EMPFEHLUNGEN'
SECTION_TECHNICAL = 'TECHNISCHE DETAILS'
SECTION_COSTS = 'UNTERHALTSKOSTEN'
SECTION_MARKET = 'MARKTANALYSE'
SECTION_COMPETITORS = 'KONKURRENZMODELLE'

BASE_SECTIONS = (
    SECTION_SUMMARY,
    SECTION_RISKS,
    SECTION_SUSPICIOUS,
    SECTION_NEGOTIATION,
    SECTION_RECOMMENDATIONS,
)
PREMIUM_SECTIONS = BASE_SECTIONS + (
    SECTION_TECHNICAL,
    SECTION_COSTS,
    SECTION_MARKET,
    SECTION_COMPETITORS,
)

POSITIVE_MARKER = 'Empfehlenswert'
NEGATIVE_MARKER = 'nicht empfehlenswert'

MIN_ITEM_LENGTH = 10

# Zeilenanfang, optional Markdown (#, **), Nummer, Name in Großbuchstaben,
# optionaler Klammerzusatz wie "(monatlich)", Doppelpunkt.
_HEADING = (
    r'^[ \t]*(?:#{{1,6}}[ \t]*)?(?:\*\*)?\d+\.[ \t]*(?:\*\*)?'
    r'{name}'
    r'(?:[ \t]*\([^)\n]*\))?(?:\*\*)?[ \t]*:(?:\*\*)?'
)
_NAME = r'[A-ZÄÖÜ](?:[A-ZÄÖÜ \t]*[A-ZÄÖÜ])?'

SECTION_RE = re.compile(
    _HEADING.format(name=r'(?P<name>' + _NAME + r')')
    + r'(?P<body>.*?)'
    + r'(?=' + _HEADING.format(name=_NAME) + r'|\Z)',
    re.MULTILINE | re.DOTALL,
)

_BULLET_RE = re.compile(r'^[-•*][ \t]*')
_PLACEHOLDER_RE = re.compile(r'\[[^\]\n]*\]')
_ENUMERATION_RE = re.compile(r'^[ \t]*\d+\.(?!\d)[ \t]*', re.MULTILINE)
_TABLE_SEPARATOR_RE = re.compile(r'^\|?[\s:|-]+\|?$')

_AMOUNT = r'(\d{1,3}(?:\.\d{3})+|\d+)'

COST_PATTERNS = {
    'fuel': re.compile(r'Kraftstoff\s*:\s*(?:ca\.\s*|~\s*)?' + _AMOUNT, re.IGNORECASE),
    'insurance': re.compile(r'Versicherung\s*:\s*(?:ca\.\s*|~\s*)?' + _AMOUNT, re.IGNORECASE),
    'maintenance': re.compile(r'Wartung\s*:\s*(?:ca\.\s*|~\s*)?' + _AMOUNT, re.IGNORECASE),
    'tax': re.compile(r'Steuer\s*:\s*(?:ca\.\s*|~\s*)?' + _AMOUNT, re.IGNORECASE),
    'depreciation': re.compile(r'Wertverlust\s*:\s*(?:ca\.\s*|~\s*)?' + _AMOUNT, re.IGNORECASE),
    'total': re.compile(r'GESAMT\s*:\s*(?:ca\.\s*|~\s*)?' + _AMOUNT, re.IGNORECASE),
}

STAT_DEFAULTS = {
    'fuelConsumption': 5.5,
    'annualInsurance': 1200,
    'annualMaintenance': 1500,
    'resalePercentage': 64,
}

STAT_PATTERNS = {
    'fuelConsumption': re.compile(r'(\d+(?:[.,]\d+)?)\s*l\s*/\s*100\s*km', re.IGNORECASE),
    'annualInsurance': re.compile(r'Versicherung:?\s*' + _AMOUNT + r'\s*€\s*/\s*Jahr', re.IGNORECASE),
    'annualMaintenance': re.compile(r'Wartung:?\s*' + _AMOUNT + r'\s*€\s*/\s*Jahr', re.IGNORECASE),
    'resalePercentage': re.compile(r'(\d+)\s*%\s*(?:Restwert|nach 3 Jahren)', re.IGNORECASE),
}


def extract_sections(text: str, allowed=PREMIUM_SECTIONS) -> Dict[str, str]:
    """Abschnittsname -> Rohtext; Überschriften außerhalb von allowed beenden nur den Vorgänger"""
    sections: Dict[str, str] = {}
    for match in SECTION_RE.finditer(text or ''):
        name = re.sub(r'\s+', ' ', match.group('name')).strip()
        if name in allowed and name not in sections:
            sections[name] = match.group('body').strip()
    return sections


def classify_verdict(summary_text: Optional[str]) -> str:
    text = summary_text or ''
    if NEGATIVE_MARKER in text.lower():
        return VERDICT_NOT_RECOMMENDED
    if POSITIVE_MARKER.lower() in text.lower():
        return VERDICT_RECOMMENDED
    return VERDICT_CAUTION


def extract_list_items(text: Optional[str]) -> List[str]:
    if not text:
        return []
    items = []
    for line in text.splitlines():
        item = _BULLET_RE.sub('', line.strip(), count=1).strip()
        if len(item) >= MIN_ITEM_LENGTH:
            items.append(item)
    return items


def clean_summary(text: Optional[str]) -> str:
    if not text:
        return ''
    cleaned = _PLACEHOLDER_RE.sub('', text)
    cleaned = _ENUMERATION_RE.sub('', cleaned)
    lines = [line.strip() for line in cleaned.splitlines()]
    return '\n'.join(line for line in lines if line)


def _to_int(raw: str) -> int:
    return int(raw.replace('.', ''))


def extract_costs(text: Optional[str]) -> Dict[str, int]:
    costs = {key: 0 for key in COST_KEYS}
    if not text:
        return costs
    for key, pattern in COST_PATTERNS.items():
        match = pattern.search(text)
        if match:
            costs[key] = _to_int(match.group(1))
    return costs


def extract_stats(text: Optional[str]) -> Dict[str, float]:
    """Kennzahlen aus dem gesamten Text, mit festen Rückfallwerten"""
    text = text or ''
    stats: Dict[str, float] = {}
    for key, pattern in STAT_PATTERNS.items():
        match = pattern.search(text)
        if not match:
            stats[key] = STAT_DEFAULTS[key]
        elif key == 'fuelConsumption':
            stats[key] = float(match.group(1).replace(',', '.'))
        else:
            stats[key] = _to_int(match.group(1))
    return stats


def extract_table(text: Optional[str]) -> List[Dict[str, str]]:
    """Markdown-Tabelle -> Liste von Zeilen (Spaltenkopf -> Zelle)"""
    if not text:
        return []
    rows = []
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith('|') or _TABLE_SEPARATOR_RE.match(line):
            continue
        rows.append([cell.strip() for cell in line.strip('|').split('|')])
    if len(rows) < 2:
        return []
    header, body = rows[0], rows[1:]
    return [
        {header[i] if i < len(header) else f'Spalte {i + 1}': cell for i, cell in enumerate(row)}
        for row in body
    ]


def parse_response(text: Optional[str], plan: Optional[str]) -> AnalysisResult:
    plan = normalize_plan(plan)
    premium = is_premium(plan)
    sections = extract_sections(text or '', PREMIUM_SECTIONS if premium else BASE_SECTIONS)
    summary = sections.get(SECTION_SUMMARY, '')

    result = AnalysisResult(
        verdict=classify_verdict(summary),
        summary=clean_summary(summary),
        risks=extract_list_items(sections.get(SECTION_RISKS)),
        suspicious_points=extract_list_items(sections.get(SECTION_SUSPICIOUS)),
        negotiation_tips=extract_list_items(sections.get(SECTION_NEGOTIATION)),
        recommendations=extract_list_items(sections.get(SECTION_RECOMMENDATIONS)),
        plan=plan,
        raw_text=text or '',
    )

    if premium:
        result.technical_details = extract_list_items(sections.get(SECTION_TECHNICAL))
        result.monthly_costs = extract_costs(sections.get(SECTION_COSTS))
        result.market_analysis = extract_list_items(sections.get(SECTION_MARKET))
        result.competitors = extract_table(sections.get(SECTION_COMPETITORS))
        result.stats = extract_stats(text)

    return result
