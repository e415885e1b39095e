"""
Shared dependencies and singleton instances for the API.
"""

import logging

from api.config import settings
from core.session import MigrationSession
from core.target import TargetForwarder
from core.translator import JobTranslator

logger = logging.getLogger(__name__)


# Create singleton instances
_session_instance = None
_translator_instance = None
_forwarder_instance = None


def get_session() -> MigrationSession:
    """Get or create the singleton MigrationSession owned by this process."""
    global _session_instance
    if _session_instance is None:
        logger.info(f"Creating MigrationSession for source {settings.source}")
        _session_instance = MigrationSession(source=settings.source, session_id=settings.session_id)
        if settings.initial_percentage is not None:
            _session_instance.start_dual_run(settings.initial_percentage)
    return _session_instance


def get_translator() -> JobTranslator:
    global _translator_instance
    if _translator_instance is None:
        _translator_instance = JobTranslator(settings.source)
    return _translator_instance


def get_forwarder() -> TargetForwarder:
    """Get or create the singleton TargetForwarder."""
    global _forwarder_instance
    if _forwarder_instance is None:
        logger.info(f"Creating TargetForwarder for {settings.target_url}")
        _forwarder_instance = TargetForwarder(
            settings.target_url,
            api_key=settings.target_api_key,
            timeout=settings.forward_timeout,
        )
    return _forwarder_instance


async def close_forwarder() -> None:
    global _forwarder_instance
    if _forwarder_instance is not None:
        await _forwarder_instance.aclose()
        _forwarder_instance = None
