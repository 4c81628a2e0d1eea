"""Clients for the external services the engine talks to."""

from .assets_client import ImageGenerationClient
from .deploy_client import DeployResult, SiteDeployClient
from .openai_client import Completion, GenerativeClient, OpenAIClient, OpenAIClientFactory
from .probe import UrlProbe
from .retrieval import RetrievalProvider, load_retrieved_context

__all__ = [
    "Completion",
    "DeployResult",
    "GenerativeClient",
    "ImageGenerationClient",
    "OpenAIClient",
    "OpenAIClientFactory",
    "RetrievalProvider",
    "SiteDeployClient",
    "UrlProbe",
    "load_retrieved_context",
]
