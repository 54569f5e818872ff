# Kisan Mitra agents
"""
Agents that sequence Gemini calls for each feature.

Exports:
- get_advisory: structured advice + illustrative image, text-only fallback
- get_market_prices: mandi prices around a location
- get_soil_analysis: soil composition from a camera frame
"""
from .advisory import get_advisory
from .market import get_market_prices, NO_DATA_MESSAGE
from .soil import get_soil_analysis
from .schemas import Advisory, Language, MarketPrice, MarketPricesResponse, SoilAnalysisResult

__all__ = [
    'get_advisory',
    'get_market_prices',
    'get_soil_analysis',
    'NO_DATA_MESSAGE',
    'Advisory',
    'Language',
    'MarketPrice',
    'MarketPricesResponse',
    'SoilAnalysisResult',
]
