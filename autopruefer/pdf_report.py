"""PDF-Gutachten für Premium-Analysen (HTML -> WeasyPrint)."""

import logging
import os
from datetime import datetime
from typing import Optional

from jinja2 import Environment, select_autoescape

from .models import AnalysisResult, VehicleData

try:
    from weasyprint import HTML

    WEASYPRINT_AVAILABLE = True
except Exception:  # pragma: no cover - fehlende Systembibliotheken (pango)
    WEASYPRINT_AVAILABLE = False

logger = logging.getLogger(__name__)

VERDICT_LABELS = {
    'recommended': 'Empfehlenswert',
    'caution': 'Mit Vorsicht zu genießen',
    'not_recommended': 'Nicht empfehlenswert',
}

COST_LABELS = {
    'fuel': 'Kraftstoff',
    'insurance': 'Versicherung',
    'maintenance': 'Wartung',
    'tax': 'Steuer',
    'depreciation': 'Wertverlust',
    'total': 'Gesamt',
}

REPORT_TEMPLATE = """<!DOCTYPE html>
<html lang="de">
<head>
<meta charset="utf-8">
<title>Autoprüfer – {{ vehicle.title }}</title>
<style>
  @page { size: A4; margin: 50px; }
  body { font-family: sans-serif; font-size: 10pt; color: #000; }
  h1 { color: #1e40af; text-align: center; font-size: 24pt; margin-bottom: 0; }
  h2 { text-align: center; font-size: 16pt; margin-top: 4px; }
  h3 { color: #1e40af; text-decoration: underline; font-size: 13pt; }
  .verdict { font-weight: bold; padding: 6px; border: 1px solid #1e40af; }
  table { border-collapse: collapse; width: 100%; }
  td, th { border: 1px solid #ccc; padding: 4px; text-align: left; }
  footer { color: #666; font-size: 8pt; text-align: center; margin-top: 24px; }
</style>
</head>
<body>
<h1>Autoprüfer</h1>
<h2>Fahrzeuganalyse {{ plan_name }}</h2>

<h3>Fahrzeugdaten</h3>
<p>
  Fahrzeug: {{ vehicle.title }}<br>
  {% if vehicle.year %}Baujahr: {{ vehicle.year }}<br>{% endif %}
  {% if vehicle.mileage %}Kilometerstand: {{ vehicle.mileage }} km<br>{% endif %}
  {% if vehicle.price %}Preis: {{ vehicle.price }} €<br>{% endif %}
  {% if vehicle.city %}Standort: {{ vehicle.city }}<br>{% endif %}
  {% if vehicle.vin %}VIN: {{ vehicle.vin }}{% endif %}
</p>

<h3>Gesamtbewertung</h3>
<p class="verdict">{{ verdict_label }}</p>
<p>{% for line in summary_lines %}{{ line }}<br>{% endfor %}</p>

{% for title, items in sections %}
  {% if items %}
  <h3>{{ title }}</h3>
  <ul>{% for item in items %}<li>{{ item }}</li>{% endfor %}</ul>
  {% endif %}
{% endfor %}

{% if result.monthly_costs %}
<h3>Unterhaltskosten (monatlich)</h3>
<table>
  {% for key, label in cost_labels.items() %}
  <tr><th>{{ label }}</th><td>{{ result.monthly_costs.get(key, 0) }} €</td></tr>
  {% endfor %}
</table>
{% endif %}

{% if result.competitors %}
<h3>Konkurrenzmodelle</h3>
<table>
  <tr>{% for column in result.competitors[0].keys() %}<th>{{ column }}</th>{% endfor %}</tr>
  {% for row in result.competitors %}
  <tr>{% for cell in row.values() %}<td>{{ cell }}</td>{% endfor %}</tr>
  {% endfor %}
</table>
{% endif %}

<footer>
  Erstellt am: {{ created }}<br>
  Autoprüfer – KI-gestützte Fahrzeuganalyse. Dieses Dokument ersetzt keine Begutachtung vor Ort.
</footer>
</body>
</html>
"""

_env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))
_template = _env.from_string(REPORT_TEMPLATE)


def render_html(vehicle: VehicleData, result: AnalysisResult) -> str:
    sections = [
        ('Hauptrisiken', result.risks),
        ('Verdächtige Punkte', result.suspicious_points),
        ('Verhandlungstipps', result.negotiation_tips),
        ('Weitere Empfehlungen', result.recommendations),
        ('Technische Details', result.technical_details or []),
        ('Marktanalyse', result.market_analysis or []),
    ]
    return _template.render(
        vehicle=vehicle,
        result=result,
        sections=sections,
        summary_lines=result.summary.splitlines(),
        plan_name=result.plan.capitalize(),
        verdict_label=VERDICT_LABELS.get(result.verdict, result.verdict),
        cost_labels=COST_LABELS,
        created=datetime.fromtimestamp(result.created_at).strftime('%d.%m.%Y'),
    )


def generate_pdf_report(vehicle: VehicleData, result: AnalysisResult, output_dir: str,
                        name: str) -> Optional[str]:
    """Schreibt <output_dir>/Autopruefer-<name>.pdf und liefert den Pfad (None ohne WeasyPrint)"""
    if not WEASYPRINT_AVAILABLE:
        logger.warning("WeasyPrint nicht installiert, PDF wird übersprungen")
        return None

    os.makedirs(output_dir, exist_ok=True)
    safe_name = ''.join(ch if ch.isalnum() or ch in '-_' else '_' for ch in name)
    path = os.path.join(output_dir, f'Autopruefer-{safe_name}.pdf')
    HTML(string=render_html(vehicle, result)).write_pdf(path)
    logger.info("PDF erstellt: %s", path)
    return path
