"""Kisan Mitra advisory backend.

Farming advice, mandi prices and soil analysis backed by Google Gemini.
"""

__version__ = "0.3.0"
