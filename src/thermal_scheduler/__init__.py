"""Thermal-aware task supervision for an energy-conscious job scheduler."""

__version__ = "0.3.0"
