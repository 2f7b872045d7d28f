from .client import GeminiClient, backoff_delay, response_text

__all__ = ["GeminiClient", "backoff_delay", "response_text"]
