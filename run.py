import logging
import os

from dotenv import load_dotenv

from autopruefer.app import create_app
from autopruefer.config import Config

# Umgebungsvariablen laden
load_dotenv()

if __name__ == '__main__':
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    logger = logging.getLogger('autopruefer')

    config = Config()
    app = create_app(config)

    logger.info("Autoprüfer läuft auf http://%s:%s", config.host, config.port)
    logger.info("API: POST /api/upload, POST /api/create-checkout, POST /api/stripe/webhook, GET /api/result")

    app.run(host=config.host, port=config.port, debug=config.debug, use_reloader=False)
