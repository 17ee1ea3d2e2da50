"""Reel studio: product page to ten-box vertical video sequence, built by LLM agents"""

__version__ = "0.1.0"
