"""AI extraction and enrichment services for Shelf Agent."""

from shelf_agent.services.ai.client import AIClient, AIProvider, get_ai_client, get_ai_client_from_env
from shelf_agent.services.ai.enrichment import AIEnricher
from shelf_agent.services.ai.extraction import VisionExtractor

__all__ = [
    "AIClient",
    "AIEnricher",
    "AIProvider",
    "VisionExtractor",
    "get_ai_client",
    "get_ai_client_from_env",
]
