from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
import logging

from core.config import get_settings
from server.api import router as reports_router

logger = logging.getLogger("uvicorn.error")
load_dotenv()
settings = get_settings()
app = FastAPI(
    title="Clinic Report Engine",
    description="Filter, sort, chart and export clinic report results",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount the report analysis router
app.include_router(reports_router)

logger.info(
    "Report engine ready: backend=%s chart_configs=%s empty_extremum=%s",
    settings.backend_url,
    settings.chart_config_backend,
    settings.empty_extremum_policy.value,
)


@app.get("/health")
async def health():
    return {"ok": True}
