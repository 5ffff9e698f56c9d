import base64
import io
import logging
import os

from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.webp')
ALLOWED_MIME_TYPES = ('image/jpeg', 'image/jpg', 'image/png', 'image/webp')


class ImageProcessor:
    """Verkleinert Fotos für die Vision-API und liefert data:-URIs"""

    def __init__(self, max_width: int = 1200, max_height: int = 1200, quality: int = 85,
                 max_file_size: int = 10 * 1024 * 1024):
        self.max_width = max_width
        self.max_height = max_height
        self.quality = quality
        self.max_file_size = max_file_size

    def validate(self, data: bytes, filename: str) -> None:
        if not data:
            raise ValidationError('Leere Datei hochgeladen', field='photos')
        if len(data) > self.max_file_size:
            raise ValidationError('Datei ist zu groß (max. 10MB)', field='photos')
        ext = os.path.splitext((filename or '').lower())[1]
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError('Ungültiges Dateiformat. Erlaubt: JPG, PNG, WebP', field='photos')

    def optimize(self, data: bytes) -> bytes:
        try:
            with Image.open(io.BytesIO(data)) as image:
                image = ImageOps.exif_transpose(image)
                if image.mode != 'RGB':
                    image = image.convert('RGB')
                image.thumbnail((self.max_width, self.max_height))
                output = io.BytesIO()
                image.save(output, format='JPEG', quality=self.quality, optimize=True)
        except (UnidentifiedImageError, OSError) as e:
            logger.warning("Bildverarbeitung fehlgeschlagen: %s", e)
            raise ValidationError('Bildverarbeitung fehlgeschlagen', field='photos') from e
        return output.getvalue()

    def process(self, data: bytes, filename: str) -> str:
        self.validate(data, filename)
        jpeg = self.optimize(data)
        return 'data:image/jpeg;base64,' + base64.b64encode(jpeg).decode('ascii')

    def process_file(self, path: str) -> str:
        with open(path, 'rb') as handle:
            return self.process(handle.read(), path)
