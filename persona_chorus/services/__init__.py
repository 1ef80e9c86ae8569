from .gemini_client import GeminiClient
from .image_analyzer import ImageAnalyzer

__all__ = ["GeminiClient", "ImageAnalyzer"]
