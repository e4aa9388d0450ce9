"""Provider implementations."""

from app.ai.providers.base import AIModel
from app.ai.providers.groq import GroqModel, build_model

__all__ = ["AIModel", "GroqModel", "build_model"]
