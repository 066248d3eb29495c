from agent.tools.gemini import GeminiClient

__all__ = ["GeminiClient"]
