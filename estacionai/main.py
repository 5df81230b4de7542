import logging

import uvicorn
from fastapi import FastAPI

from estacionai import config
from estacionai.adapters.http_api import api_router, parking_error_handler
from estacionai.deps import engine
from estacionai.domain.db_models import Base
from estacionai.domain.errors import ParkingError

"""
== EstacionAI ==
Servicio de estacionamiento multi-empresa: cada empresa tiene sus vagas, sus
tarifas por tipo de vehiculo y su libro de entradas/salidas.

    vaga:  available -> occupied -> paying -> available
    cobro: horas * valor_hora + fracciones de 15 min * valor_fraccion

Todo pasa por la API REST en /v1 (ver adapters.http_api). La identidad del
llamador sale del bearer token (adapters.auth).
"""

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="EstacionAI Parking Service", version="0.1.0")
app.include_router(api_router, prefix="/v1")
app.add_exception_handler(ParkingError, parking_error_handler)


@app.get("/health")
def health():
    return {"status": "ok"}

@app.on_event("startup")
async def on_startup():
    if config.CREATE_SCHEMA:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("[DB] schema ready")

@app.on_event("shutdown")
async def on_shutdown():
    await engine.dispose()

if __name__ == "__main__":
    uvicorn.run("estacionai.main:app", host="0.0.0.0", port=8080, reload=True)
