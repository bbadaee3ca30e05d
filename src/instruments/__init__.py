"""Instrument definitions loaded from configuration."""

from src.instruments.instrument import Instrument
from src.instruments.loader import build_instrument, clear_instrument_cache, load_instrument

__all__ = ["Instrument", "build_instrument", "clear_instrument_cache", "load_instrument"]
