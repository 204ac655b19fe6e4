"""Remote model integration: subscription classification and extraction."""

from .client import LLMClient
from .prompts import ClassificationPrompt, ExtractionPrompt
from .service import SubscriptionAIService

__all__ = ["ClassificationPrompt", "ExtractionPrompt", "LLMClient", "SubscriptionAIService"]
