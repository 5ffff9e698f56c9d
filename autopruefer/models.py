import time
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

PLANS = ('basic', 'standard', 'premium')
DEFAULT_PLAN = 'basic'

VERDICT_RECOMMENDED = 'recommended'
VERDICT_CAUTION = 'caution'
VERDICT_NOT_RECOMMENDED = 'not_recommended'

COST_KEYS = ('fuel', 'insurance', 'maintenance', 'tax', 'depreciation', 'total')


def normalize_plan(plan: Optional[str]) -> str:
    """Unbekannte Tarife werden wie 'basic' behandelt"""
    plan = (plan or '').strip().lower()
    return plan if plan in PLANS else DEFAULT_PLAN


def is_premium(plan: Optional[str]) -> bool:
    return normalize_plan(plan) == 'premium'


def _text(value) -> str:
    return '' if value is None else str(value).strip()


@dataclass
class VehicleData:
    """Fahrzeugangaben aus Formular, JSON oder Stripe-Metadaten"""

    brand: str = ''
    model: str = ''
    year: str = ''
    mileage: str = ''
    price: str = ''
    city: str = ''
    vin: str = ''
    description: str = ''
    url: str = ''

    @classmethod
    def from_mapping(cls, data: Optional[Mapping]) -> 'VehicleData':
        data = data or {}
        return cls(
            brand=_text(data.get('brand') or data.get('make')),
            model=_text(data.get('model')),
            year=_text(data.get('year')),
            mileage=_text(data.get('mileage')),
            price=_text(data.get('price')),
            city=_text(data.get('city') or data.get('location')),
            vin=_text(data.get('vin')),
            description=_text(data.get('description')),
            url=_text(data.get('url')),
        )

    def to_metadata(self) -> Dict[str, str]:
        """Stripe erlaubt nur kurze String-Werte in den Metadaten"""
        return {
            'brand': self.brand[:60],
            'model': self.model[:60],
            'year': self.year[:10],
            'mileage': self.mileage[:20],
            'price': self.price[:20],
            'city': self.city[:60],
            'vin': self.vin[:60],
            'description': self.description[:450],
            'url': self.url[:450],
        }

    def to_dict(self) -> Dict[str, str]:
        return {
            'brand': self.brand,
            'model': self.model,
            'year': self.year,
            'mileage': self.mileage,
            'price': self.price,
            'city': self.city,
            'vin': self.vin,
            'description': self.description,
            'url': self.url,
        }

    @property
    def title(self) -> str:
        return ' '.join(part for part in (self.brand, self.model) if part) or 'Fahrzeug'


@dataclass
class AnalysisRequest:
    plan: str = DEFAULT_PLAN
    vehicle: VehicleData = field(default_factory=VehicleData)
    photos: List[str] = field(default_factory=list)  # data:-URIs oder öffentliche URLs
    url: str = ''
    listing_text: str = ''
    customer_email: str = ''

    def __post_init__(self):
        self.plan = normalize_plan(self.plan)


@dataclass
class FailedAnalysis:
    """Platzhalter im Ergebnis-Cache, damit das Polling nicht endlos 'pending' bleibt"""

    plan: str = DEFAULT_PLAN
    error: str = 'Analyse fehlgeschlagen. Bitte Support kontaktieren.'

    def to_dict(self) -> Dict:
        return {'status': 'failed', 'planTier': self.plan, 'error': self.error}


@dataclass
class AnalysisResult:
    verdict: str = VERDICT_CAUTION
    summary: str = ''
    risks: List[str] = field(default_factory=list)
    suspicious_points: List[str] = field(default_factory=list)
    negotiation_tips: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    plan: str = DEFAULT_PLAN

    # nur Premium
    technical_details: Optional[List[str]] = None
    monthly_costs: Optional[Dict[str, int]] = None
    market_analysis: Optional[List[str]] = None
    competitors: Optional[List[Dict[str, str]]] = None
    stats: Optional[Dict[str, float]] = None

    raw_text: str = ''
    fallback: bool = False
    pdf_path: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    expires_at: Optional[float] = None

    def stamp(self, ttl_ms: int, now: Optional[float] = None) -> 'AnalysisResult':
        now = time.time() if now is None else now
        self.created_at = now
        self.expires_at = now + ttl_ms / 1000.0
        return self

    @property
    def premium(self) -> bool:
        return is_premium(self.plan)

    def to_dict(self) -> Dict:
        """JSON-Darstellung für den Client (ohne Serverpfade)"""
        payload = {
            'verdict': self.verdict,
            'summary': self.summary,
            'risks': list(self.risks),
            'suspiciousPoints': list(self.suspicious_points),
            'negotiationTips': list(self.negotiation_tips),
            'recommendations': list(self.recommendations),
            'planTier': self.plan,
            'rawText': self.raw_text,
            'fallback': self.fallback,
            'createdAt': int(self.created_at * 1000),
            'expiresAt': int(self.expires_at * 1000) if self.expires_at else None,
        }
        if self.premium:
            payload.update({
                'technicalDetails': list(self.technical_details or []),
                'monthlyCosts': dict(self.monthly_costs or {key: 0 for key in COST_KEYS}),
                'marketAnalysis': list(self.market_analysis or []),
                'competitors': list(self.competitors or []),
                'stats': dict(self.stats or {}),
            })
        return payload
