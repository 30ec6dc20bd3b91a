"""
Model client exports.
"""

from fixloop.models.openai_client import OpenAIClient

__all__ = ["OpenAIClient"]
