# backend/portfolio_api/core/settings.py
import os
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel
from dotenv import load_dotenv

# Resolve backend directory and load .env explicitly
BACKEND_DIR = Path(__file__).resolve().parents[2]  # .../backend
load_dotenv(BACKEND_DIR / ".env")  # do NOT set override=True; shell exports still win


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() not in {"0", "false", "no", ""}


class Settings(BaseModel):
    env: str = os.getenv("APP_ENV", "dev")
    port: int = int(os.getenv("PORT", "4000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # source sheet
    portfolio_path: str = os.getenv("PORTFOLIO_PATH", str(BACKEND_DIR / "data" / "portfolio.csv"))
    sheet_header_rows: int = int(os.getenv("SHEET_HEADER_ROWS", "1"))
    symbol_map_path: Optional[str] = os.getenv("SYMBOL_MAP_PATH") or None

    # market data
    quote_provider: str = os.getenv("QUOTE_PROVIDER", "yfinance")
    quote_concurrency: int = int(os.getenv("QUOTE_CONCURRENCY", "5"))
    fundamentals_source: str = os.getenv("FUNDAMENTALS_SOURCE", "google")
    default_exchange: str = os.getenv("DEFAULT_EXCHANGE", "NSE")
    http_timeout_s: float = float(os.getenv("HTTP_TIMEOUT_S", "10"))
    scrape_rpm: int = int(os.getenv("SCRAPE_RPM", "60"))
    batch_size: int = int(os.getenv("BATCH_SIZE", "10"))
    batch_delay_s: float = float(os.getenv("BATCH_DELAY_S", "1.0"))
    batch_timeout_s: float = float(os.getenv("BATCH_TIMEOUT_S", "8"))

    # cache + refresh
    cache_ttl_s: float = float(os.getenv("CACHE_TTL_S", "900"))
    cache_serve_stale: bool = _flag("CACHE_SERVE_STALE", "1")
    refresh_interval_min: float = float(os.getenv("REFRESH_INTERVAL_MIN", "10"))
    request_timeout_s: float = float(os.getenv("REQUEST_TIMEOUT_S", "15"))
    refresh_backoff_s: float = float(os.getenv("REFRESH_BACKOFF_S", "60"))

    cors_origins: List[str] = [
        o.strip()
        for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
        if o.strip()
    ]

settings = Settings()
