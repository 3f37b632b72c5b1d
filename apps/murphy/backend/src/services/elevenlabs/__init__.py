from .client import ElevenLabsClient, OutboundCallResult

__all__ = ["ElevenLabsClient", "OutboundCallResult"]
