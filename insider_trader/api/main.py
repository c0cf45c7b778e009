"""
FastAPI application entry point.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from insider_trader.api.routes import approvals, health, pipeline, recommendations, signals, telegram
from insider_trader.utils.logging import configure_logging
from config.settings import get_settings

settings = get_settings()
configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

app = FastAPI(
    title="Insider Trader API",
    description="Insider purchase signals with human-approved trade execution",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(approvals.router, tags=["Approvals"])
app.include_router(signals.router, prefix="/signals", tags=["Signals"])
app.include_router(recommendations.router, prefix="/recommendations", tags=["Recommendations"])
app.include_router(pipeline.router, prefix="/pipeline", tags=["Pipeline"])
app.include_router(telegram.router, prefix="/telegram", tags=["Telegram"])
