"""External collaborators: intent classification and persistence."""

from .classifier import IntentClassifier, OpenRouterIntentClassifier
from .persistence import InteractionRepository, InteractionSink, LoggingSink

__all__ = [
    "IntentClassifier",
    "InteractionRepository",
    "InteractionSink",
    "LoggingSink",
    "OpenRouterIntentClassifier",
]
