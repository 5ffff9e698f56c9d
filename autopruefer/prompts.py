"""
System-Prompts je Tarif.

Die Überschriften müssen exakt zu report_parser.py passen, sonst bleiben die
Felder des Ergebnisses leer.
"""

from typing import Dict, Optional

from .models import VehicleData, normalize_plan

_INTRO = """Du bist ein erfahrener Kfz-Gutachter mit über 20 Jahren Erfahrung im deutschen Automarkt.
Du analysierst Fahrzeuge für potenzielle Käufer und gibst ehrliche, konstruktive Bewertungen.
Sprache: Deutsch."""

_BASE_STRUCTURE = """WICHTIG: Strukturiere deine Antwort EXAKT wie folgt:

1. GESAMTBEWERTUNG: [Empfehlenswert/Mit Vorsicht zu genießen/Nicht empfehlenswert]
[Kurze Begründung in 1-2 Sätzen]

2. HAUPTRISIKEN:
- [Risiko 1]
- [Risiko 2]
- [Risiko 3]

3. VERDÄCHTIGE PUNKTE:
- [Auffälligkeit 1]
- [Auffälligkeit 2]

4. VERHANDLUNGSTIPPS:
- [Tipp 1 mit geschätzten Kosten]
- [Tipp 2 mit geschätzten Kosten]
- [Tipp 3 mit Verhandlungsspielraum]

5. WEITERE EMPFEHLUNGEN:
- [Empfehlung 1]
- [Empfehlung 2]
- [Empfehlung 3]"""

_BASIC_TASK = """Erstelle eine kurze, prägnante Ersteinschätzung (Basic).
Halte jeden Punkt auf eine Zeile: grober Zustand, Plausibilität von Preis und Laufleistung, schnelle Empfehlung."""

_STANDARD_TASK = """Erstelle eine ausführlichere Standard-Analyse.
Beurteile den Zustand, nenne typische Schwachstellen des Modells mit groben Reparaturkosten
und prüfe die Plausibilität des Preises. Begründe jeden Punkt in einem vollständigen Satz."""

_PREMIUM_TASK = """Erstelle ein gründliches Premium-Gutachten mit klaren Handlungsempfehlungen und realistischen Risiken.
Beurteile den technischen Zustand anhand der Angaben und Fotos, nenne bekannte Rückrufe,
und schätze die Kosten für die nächsten 12-24 Monate."""

_PREMIUM_EXTENSION = """PREMIUM-ANALYSE zusätzlich:

6. TECHNISCHE DETAILS:
- Motor: [Bewertung und bekannte Probleme]
- Getriebe: [Typ und Zuverlässigkeit]
- Fahrwerk: [Zustand und typische Schwachstellen]
- Elektronik: [Komplexität und Fehleranfälligkeit]

7. UNTERHALTSKOSTEN (monatlich):
- Kraftstoff: [€]
- Versicherung: [€]
- Wartung: [€]
- Steuer: [€]
- Wertverlust: [€]
- GESAMT: [€/Monat]
Nenne zusätzlich den Verbrauch in L/100km sowie Versicherung und Wartung in €/Jahr.

8. MARKTANALYSE:
- Aktueller Marktwert: [€]
- Preis-Leistung: [Bewertung]
- Wiederverkaufswert in 3 Jahren: [€ und % nach 3 Jahren]

9. KONKURRENZMODELLE:
Erstelle eine Vergleichstabelle (Markdown, Spalten: Modell | Preis | Verbrauch | Versicherung | Zuverlässigkeit)
mit 3 direkten Konkurrenten.

Gib eine SEHR detaillierte Analyse mit mindestens 40 Prüfpunkten."""

SYSTEM_PROMPTS: Dict[str, str] = {
    'basic': '\n\n'.join([_INTRO, _BASIC_TASK, _BASE_STRUCTURE]),
    'standard': '\n\n'.join([_INTRO, _STANDARD_TASK, _BASE_STRUCTURE]),
    'premium': '\n\n'.join([_INTRO, _PREMIUM_TASK, _BASE_STRUCTURE, _PREMIUM_EXTENSION]),
}

MAX_TOKENS = {
    'basic': 1000,
    'standard': 2000,
    'premium': 4000,
}

TEMPERATURE = 0.7

NO_DATA_HINT = 'Keine spezifischen Daten verfügbar. Gib allgemeine Hinweise zur Fahrzeugprüfung.'


def get_system_prompt(plan: Optional[str]) -> str:
    return SYSTEM_PROMPTS[normalize_plan(plan)]


def max_tokens_for(plan: Optional[str]) -> int:
    return MAX_TOKENS[normalize_plan(plan)]


def _format_number(value: str) -> str:
    """'125000' -> '125.000' (deutsche Tausendertrennung); Freitext bleibt unverändert"""
    digits = value.replace('.', '').replace(' ', '')
    if not digits.isdigit():
        return value
    return f'{int(digits):,}'.replace(',', '.')


def build_user_prompt(vehicle: Optional[VehicleData], listing_text: str = '',
                      photo_count: int = 0, url: str = '') -> str:
    vehicle = vehicle or VehicleData()
    lines = ['Analysiere dieses Fahrzeug:', '']

    facts = [
        ('Marke/Modell', vehicle.title if (vehicle.brand or vehicle.model) else ''),
        ('Baujahr', vehicle.year),
        ('Kilometerstand', f'{_format_number(vehicle.mileage)} km' if vehicle.mileage else ''),
        ('Preis', f'{_format_number(vehicle.price)} €' if vehicle.price else ''),
        ('Standort', vehicle.city),
        ('VIN', vehicle.vin),
        ('Beschreibung', vehicle.description),
    ]
    facts = [(label, value) for label, value in facts if value]
    if facts:
        lines.append('[Fahrzeugdaten]')
        lines.extend(f'- {label}: {value}' for label, value in facts)
        lines.append('')

    if listing_text:
        lines.append(f'Inseratstext:\n{listing_text}')
        lines.append('')

    if photo_count > 0:
        lines.append(f'Es wurden {photo_count} Fotos zur Analyse bereitgestellt.')

    if url:
        lines.append(f'Inserat-URL: {url}')

    if not listing_text and photo_count == 0 and not facts:
        lines.append(NO_DATA_HINT)

    return '\n'.join(lines).strip()
