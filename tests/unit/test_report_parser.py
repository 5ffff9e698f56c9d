import pytest

from autopruefer.models import (VERDICT_CAUTION, VERDICT_NOT_RECOMMENDED,
                                VERDICT_RECOMMENDED)
from autopruefer.prompts import SYSTEM_PROMPTS
from autopruefer.report_parser import (MIN_ITEM_LENGTH, STAT_DEFAULTS,
                                       classify_verdict, clean_summary,
                                       extract_costs, extract_list_items,
                                       extract_sections, extract_stats,
                                       extract_table, parse_response)
from tests.conftest import BASIC_RESPONSE, PREMIUM_RESPONSE


class TestClassifyVerdict:
    def test_negative_marker(self):
        assert classify_verdict('Nicht empfehlenswert wegen Rahmenschaden') == VERDICT_NOT_RECOMMENDED

    def test_negative_wins_over_positive(self):
        text = 'Empfehlenswert wäre er nur mit Gutachten, so aber nicht empfehlenswert.'
        assert classify_verdict(text) == VERDICT_NOT_RECOMMENDED

    def test_positive_marker(self):
        assert classify_verdict('Empfehlenswert, gepflegter Zustand') == VERDICT_RECOMMENDED

    def test_markers_ignore_case(self):
        assert classify_verdict('EMPFEHLENSWERT') == VERDICT_RECOMMENDED
        assert classify_verdict('NICHT EMPFEHLENSWERT') == VERDICT_NOT_RECOMMENDED

    def test_neither_marker(self):
        assert classify_verdict('Mit Vorsicht zu genießen') == VERDICT_CAUTION

    @pytest.mark.parametrize('text', ['', None])
    def test_empty(self, text):
        assert classify_verdict(text) == VERDICT_CAUTION


class TestListItems:
    def test_bullets_are_stripped(self):
        text = '- Rost am Schweller\n• Ölverlust am Motor\n* Bremsen verschlissen'
        assert extract_list_items(text) == [
            'Rost am Schweller',
            'Ölverlust am Motor',
            'Bremsen verschlissen',
        ]

    def test_short_items_are_dropped(self):
        assert extract_list_items('- kurz\n- 123456789\n- 1234567890') == ['1234567890']

    def test_every_item_has_minimum_length_and_order_is_kept(self):
        text = '\n'.join(['- a', '- Erster langer Punkt', '', '-   ', '- Zweiter langer Punkt', 'x'])
        items = extract_list_items(text)
        assert items == ['Erster langer Punkt', 'Zweiter langer Punkt']
        assert all(len(item.strip()) >= MIN_ITEM_LENGTH for item in items)

    def test_only_one_bullet_is_removed(self):
        assert extract_list_items('- - doppelter Spiegelstrich') == ['- doppelter Spiegelstrich']

    def test_none(self):
        assert extract_list_items(None) == []


class TestSections:
    def test_sections_stop_at_next_heading(self):
        sections = extract_sections(BASIC_RESPONSE)
        assert sections['HAUPTRISIKEN'].splitlines() == [
            '- Zahnriemenwechsel steht bald an',
            '- Leichte Korrosion an der Heckklappe',
        ]
        assert sections['WEITERE EMPFEHLUNGEN'] == '- Probefahrt mit kaltem Motor machen'

    def test_markdown_headings(self):
        text = '## 1. **GESAMTBEWERTUNG:** Empfehlenswert\n### 2. HAUPTRISIKEN:\n- Getriebe ruckelt beim Anfahren\n'
        sections = extract_sections(text)
        assert sections['GESAMTBEWERTUNG'].startswith('Empfehlenswert')
        assert sections['HAUPTRISIKEN'] == '- Getriebe ruckelt beim Anfahren'

    def test_unknown_heading_terminates_previous_section(self):
        text = '2. HAUPTRISIKEN:\n- Rost im Unterboden\n3. SONSTIGES:\n- nicht übernehmen bitte\n'
        sections = extract_sections(text)
        assert sections == {'HAUPTRISIKEN': '- Rost im Unterboden'}

    def test_first_duplicate_wins(self):
        text = '2. HAUPTRISIKEN:\n- Erstes Vorkommen hier\n2. HAUPTRISIKEN:\n- Zweites Vorkommen hier\n'
        assert extract_sections(text)['HAUPTRISIKEN'] == '- Erstes Vorkommen hier'

    def test_numbers_inside_items_do_not_start_sections(self):
        text = '4. VERHANDLUNGSTIPPS:\n- Preis 2.500 € unter Marktwert ansetzen\n'
        assert extract_sections(text)['VERHANDLUNGSTIPPS'] == '- Preis 2.500 € unter Marktwert ansetzen'


class TestSummary:
    def test_placeholders_and_enumeration_are_removed(self):
        assert clean_summary('[Empfehlenswert]\n1. Gepflegter Zustand') == 'Gepflegter Zustand'

    def test_echoed_template_options_are_removed(self):
        text = '1. GESAMTBEWERTUNG: [Empfehlenswert/Mit Vorsicht zu genießen/Nicht empfehlenswert]\nGepflegter Zustand.'
        assert parse_response(text, 'basic').summary == 'Gepflegter Zustand.'

    def test_text_around_placeholder_is_kept(self):
        assert clean_summary('Preis [geschätzt] fair') == 'Preis  fair'

    def test_amounts_survive(self):
        assert clean_summary('2.500 € zu teuer') == '2.500 € zu teuer'


class TestParseResponse:
    def test_concrete_scenario(self):
        text = ('1. GESAMTBEWERTUNG:\nNicht empfehlenswert wegen Rahmenschaden\n'
                '2. HAUPTRISIKEN:\n- Rahmenschaden sichtbar\n- Rost im Unterboden\n')
        result = parse_response(text, 'basic')

        assert result.verdict == VERDICT_NOT_RECOMMENDED
        assert result.risks == ['Rahmenschaden sichtbar', 'Rost im Unterboden']
        assert result.negotiation_tips == []
        assert result.recommendations == []
        assert result.suspicious_points == []
        assert result.summary == 'Nicht empfehlenswert wegen Rahmenschaden'

    def test_full_basic_response(self):
        result = parse_response(BASIC_RESPONSE, 'basic')

        assert result.verdict == VERDICT_RECOMMENDED
        assert result.summary == 'Empfehlenswert\nGepflegtes Fahrzeug mit nachvollziehbarer Historie.'
        assert result.suspicious_points == ['Serviceheft endet bei 90.000 km']
        assert result.negotiation_tips == ['Zahnriemen kostet ca. 800 €, als Abschlag fordern']
        assert result.recommendations == ['Probefahrt mit kaltem Motor machen']
        assert result.raw_text == BASIC_RESPONSE
        assert result.monthly_costs is None
        assert 'monthlyCosts' not in result.to_dict()

    @pytest.mark.parametrize('plan', ['basic', 'standard'])
    def test_template_skeleton_fills_every_list(self, plan):
        prompt = SYSTEM_PROMPTS[plan]
        skeleton = prompt[prompt.index('1. GESAMTBEWERTUNG'):]
        result = parse_response(skeleton, plan)

        for items in (result.risks, result.suspicious_points, result.negotiation_tips, result.recommendations):
            assert items
        assert result.risks == ['[Risiko 1]', '[Risiko 2]', '[Risiko 3]']
        assert result.negotiation_tips[0] == '[Tipp 1 mit geschätzten Kosten]'

    def test_skeleton_with_one_bullet_each(self):
        bullets = {
            'GESAMTBEWERTUNG': 'Mit Vorsicht zu genießen',
            'HAUPTRISIKEN': '- Kupplung rutscht leicht',
            'VERDÄCHTIGE PUNKTE': '- Kilometerstand wirkt zu niedrig',
            'VERHANDLUNGSTIPPS': '- Neue Reifen als Abschlag fordern',
            'WEITERE EMPFEHLUNGEN': '- Unfallfreiheit schriftlich bestätigen',
        }
        text = '\n\n'.join(f'{i}. {name}:\n{body}' for i, (name, body) in enumerate(bullets.items(), 1))
        result = parse_response(text, 'standard')

        assert result.verdict == VERDICT_CAUTION
        assert result.risks == ['Kupplung rutscht leicht']
        assert result.suspicious_points == ['Kilometerstand wirkt zu niedrig']
        assert result.negotiation_tips == ['Neue Reifen als Abschlag fordern']
        assert result.recommendations == ['Unfallfreiheit schriftlich bestätigen']

    def test_premium_skeleton_fills_premium_lists(self):
        prompt = SYSTEM_PROMPTS['premium']
        result = parse_response(prompt[prompt.index('1. GESAMTBEWERTUNG'):], 'premium')

        assert result.technical_details[0] == 'Motor: [Bewertung und bekannte Probleme]'
        assert result.market_analysis
        assert set(result.monthly_costs) == {'fuel', 'insurance', 'maintenance', 'tax', 'depreciation', 'total'}

    def test_premium_response(self):
        result = parse_response(PREMIUM_RESPONSE, 'premium')

        assert result.technical_details == [
            'Motor: 2.0 TDI, robust bei regelmäßiger Wartung',
            'Getriebe: DSG, Ölwechsel alle 60.000 km',
        ]
        assert result.monthly_costs == {
            'fuel': 180,
            'insurance': 95,
            'maintenance': 60,
            'tax': 25,
            'depreciation': 250,
            'total': 610,
        }
        assert result.stats == {
            'fuelConsumption': 6.2,
            'annualInsurance': 1140,
            'annualMaintenance': 720,
            'resalePercentage': 58,
        }
        assert result.competitors == [
            {'Modell': 'Skoda Octavia', 'Preis': '16.900 €', 'Verbrauch': '5,8 L'},
            {'Modell': 'Seat Leon', 'Preis': '15.500 €', 'Verbrauch': '6,0 L'},
        ]
        payload = result.to_dict()
        assert payload['planTier'] == 'premium'
        assert payload['monthlyCosts']['total'] == 610

    def test_premium_sections_ignored_for_basic(self):
        result = parse_response(PREMIUM_RESPONSE, 'basic')
        assert result.technical_details is None
        # Abschnitt 6 beendet die Empfehlungen auch im Basic-Tarif
        assert result.recommendations == ['Probefahrt mit kaltem Motor machen']

    @pytest.mark.parametrize('text', ['', None, 'Völlig unstrukturierte Antwort ohne Abschnitte', '1. GESAMTBEWERTUNG'])
    def test_malformed_input_never_raises(self, text):
        result = parse_response(text, 'premium')
        assert result.verdict == VERDICT_CAUTION
        assert result.risks == []
        assert result.monthly_costs == {key: 0 for key in result.monthly_costs}
        assert result.stats == STAT_DEFAULTS

    def test_unknown_plan_is_basic(self):
        assert parse_response(BASIC_RESPONSE, 'gold').plan == 'basic'


class TestPremiumExtractors:
    def test_costs_default_to_zero(self):
        assert extract_costs('Kraftstoff: 150 €') == {
            'fuel': 150, 'insurance': 0, 'maintenance': 0, 'tax': 0, 'depreciation': 0, 'total': 0,
        }

    def test_costs_with_thousands_separator(self):
        assert extract_costs('GESAMT: ~1.250 €')['total'] == 1250

    def test_stats_defaults(self):
        assert extract_stats('') == STAT_DEFAULTS

    def test_stats_restwert(self):
        assert extract_stats('Nach drei Jahren bleiben 61 % Restwert')['resalePercentage'] == 61

    def test_table_needs_header_and_row(self):
        assert extract_table('| Modell | Preis |') == []
        assert extract_table('kein Markdown') == []
