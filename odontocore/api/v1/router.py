"""
Router principal de la API v1.
Agrupa todos los sub-routers de la versión 1.
"""

from fastapi import APIRouter

from odontocore.api.v1.records import router as records_router
from odontocore.api.v1.dental_charts import router as dental_charts_router

api_v1_router = APIRouter()

api_v1_router.include_router(
    records_router,
    prefix="/records",
    tags=["Historia Clínica"],
)

api_v1_router.include_router(
    dental_charts_router,
    prefix="/dental-charts",
    tags=["Odontograma"],
)
