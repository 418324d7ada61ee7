"""
Wattline Controller Services

Acquisition Service - Modbus RTU polling of power analyzers, rolling
per-device history and live reading fan-out.
"""

__version__ = "1.0.0"
