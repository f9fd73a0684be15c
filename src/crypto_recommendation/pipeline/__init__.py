"""Startup pipeline wiring storage and ingestion together."""

from __future__ import annotations

from .load_prices import build_store, run_ingestion

__all__ = ["build_store", "run_ingestion"]
