from fastapi import FastAPI
import logging

from emulator_api.api.routes import router
from emulator_api.engine.service_key import init_service_key
from emulator_api.settings import load_dotenv_if_present, settings_from_env

load_dotenv_if_present()

app = FastAPI(title="emulator-admin-api", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=settings_from_env().log_level)
logger = logging.getLogger(__name__)


@app.on_event("startup")
async def _startup() -> None:
    settings = settings_from_env()
    init_service_key(settings=settings)
    logger.info("Emulator admin API ready (redis=%s, prefix=%s)", settings.redis_url, settings.key_prefix)
