"""Provider implementations."""

from app.ai.providers.base import DiagramFixer, DiagramFixRequest, DiagramFixResponse, GenerationProvider, ModelResponse, PromptPayload, ProviderHTTPError

__all__ = ["DiagramFixer", "DiagramFixRequest", "DiagramFixResponse", "GenerationProvider", "ModelResponse", "PromptPayload", "ProviderHTTPError"]
