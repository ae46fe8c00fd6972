"""Carecore: memory, safety and photo decisions for a voice companion."""

from carecore.config import CarecoreConfig, get_config
from carecore.main import CarecoreApplication, create_application
from carecore.orchestrator import ConversationSession, TurnOrchestrator

__version__ = "0.1.0"

__all__ = [
    "CarecoreApplication",
    "CarecoreConfig",
    "ConversationSession",
    "TurnOrchestrator",
    "__version__",
    "create_application",
    "get_config",
]
