"""
Acquisition Service - Modbus RTU Power Analyzer Polling

Responsibilities:
- Maintain one serial connection per port (shared by its devices)
- Poll enabled devices on a fixed interval, one exchange per bus at a time
- Decode raw register words into scaled measurements
- Keep the latest reading and a rolling history per device
- Publish live readings to subscribers
"""

from .service import AcquisitionService

__all__ = ["AcquisitionService"]
