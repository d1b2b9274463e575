"""Core configuration for gasscope."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="GASSCOPE_",
        case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "gasscope"
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # ── RPC / trace fetching ─────────────────────────────────────────────
    rpc_url: str = "http://localhost:8547"
    rpc_timeout_seconds: float = Field(default=30.0, gt=0)
    rpc_tracer: str = "callTracer"  # empty string = default opcode logger
    fetch_max_workers: int = Field(default=4, ge=1)

    # ── Flamegraph ───────────────────────────────────────────────────────
    flamegraph_width: int = Field(default=1200, gt=0)
    flamegraph_title: str = "Transaction Gas Profile"
    flamegraph_palette: Literal["hot", "mem", "io", "java", "aqua"] = "hot"
    flamegraph_min_width: float = Field(default=0.0, ge=0)
    flamegraph_fold_recursion: bool = False

    # ── Summary / regression ─────────────────────────────────────────────
    summary_top_n: int = Field(default=20, ge=1)
    regression_threshold_pct: float = 10.0


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
