import logging

from fastapi import FastAPI

import config
from database import init_models
from knockout.errors import KnockoutError
from knockout.router import router as knockout_router, knockout_error_handler

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(title="Padel Knockout")
app.add_exception_handler(KnockoutError, knockout_error_handler)
app.include_router(knockout_router)


@app.on_event("startup")
async def _startup_init_models() -> None:
    await init_models()
