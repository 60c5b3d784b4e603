from ux_pipeline.core.config import get_config
from ux_pipeline.core.logging import setup_logging

__all__ = ["get_config", "setup_logging"]
