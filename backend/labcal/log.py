"""Application-wide logging setup."""
import logging
import sys

from labcal.config import settings


def setup_logging():
    """Configure the root logger once; later calls are no-ops (``basicConfig``)."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
