from typing import List, Mapping, Optional
from urllib.parse import urlparse

from .errors import ValidationError
from .models import PLANS, VehicleData

MAX_PHOTOS = 10


def validate_plan(plan: Optional[str]) -> str:
    plan = (plan or '').strip().lower()
    if plan not in PLANS:
        raise ValidationError(f"Ungültiger Plan '{plan}'. Erlaubt: {', '.join(PLANS)}.", field='plan')
    return plan


def validate_url(url: Optional[str]) -> str:
    """Leere URL ist erlaubt; sonst nur http(s) mit Host"""
    url = (url or '').strip()
    if not url:
        return ''
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValidationError('Die Inserats-URL muss mit http:// oder https:// beginnen.', field='url')
    return url


def validate_photos(photos) -> List[str]:
    photos = list(photos or [])
    if len(photos) > MAX_PHOTOS:
        raise ValidationError(f'Maximal {MAX_PHOTOS} Fotos erlaubt.', field='photos')
    return photos


def validate_photo_refs(photos) -> List[str]:
    """Fotos aus JSON: nur data:image/-URIs oder http(s)-URLs"""
    photos = validate_photos(photos)
    for photo in photos:
        if isinstance(photo, str) and photo.startswith('data:image/'):
            continue
        parsed = urlparse(photo) if isinstance(photo, str) else None
        if parsed is None or parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValidationError('Fotos müssen als data:image/-URI oder http(s)-URL übergeben werden.',
                                  field='photos')
    return photos


def validate_checkout(data: Optional[Mapping]) -> VehicleData:
    vehicle = VehicleData.from_mapping(data)
    if not vehicle.brand or not vehicle.model:
        raise ValidationError('Marke und Modell sind erforderlich.', field='vehicleData')
    validate_url(vehicle.url)
    return vehicle


def validate_analysis_input(url: str, photos: List[str]) -> None:
    if not url and not photos:
        raise ValidationError('Bitte eine Inserats-URL oder mindestens ein Foto angeben.')
