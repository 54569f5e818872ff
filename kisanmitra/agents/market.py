"""
Market Price Agent

Asks Gemini for current mandi prices of common commodities around a
location. Prices are per quintal (100 kg). Rows that do not form a complete
price record are dropped rather than passed on half-filled.
"""
import logging
from typing import Any, Dict, List

from google.genai import types
from pydantic import ValidationError as SchemaError

from ..errors import UpstreamFailure, ValidationError
from ..services import gemini
from .schemas import MarketPrice

logger = logging.getLogger(__name__)

PRICE_ROW_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "commodity": types.Schema(type=types.Type.STRING),
        "variety": types.Schema(type=types.Type.STRING),
        "minPrice": types.Schema(type=types.Type.NUMBER),
        "maxPrice": types.Schema(type=types.Type.NUMBER),
        "market": types.Schema(type=types.Type.STRING),
    },
    required=["commodity", "variety", "minPrice", "maxPrice", "market"],
)

MARKET_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={"prices": types.Schema(type=types.Type.ARRAY, items=PRICE_ROW_SCHEMA)},
    required=["prices"],
)

FAILURE_MESSAGE = (
    "Failed to fetch market prices. The AI expert might be busy or the location may not be "
    "found. Please try again."
)
NO_DATA_MESSAGE = "No market data found for this location. Please try a larger nearby city or region."


def market_instruction(location: str) -> str:
    return f"""You are an agricultural market data analyst. Your task is to provide the latest available market prices for common agricultural commodities in and around the specified location: {location}.
Provide data for at least 5 to 10 common commodities found in that region. The prices should be per quintal (100 kg).
Your final output must be a JSON object containing a single key "prices" which is an array of objects. Each object in the array represents a commodity and must have the following properties:
- "commodity": (string) The name of the commodity (e.g., "Wheat", "Tomato").
- "variety": (string) The specific variety (e.g., "Lokwan", "Deshi").
- "minPrice": (number) The minimum price per quintal.
- "maxPrice": (number) The maximum price per quintal.
- "market": (string) The name of the market (mandi) where this price was recorded.

If you cannot find data for the specific location, try to find data for the nearest major agricultural market.
Do not include any introductory text, just the JSON object."""


def _normalize_rows(rows: Any) -> List[MarketPrice]:
    if not isinstance(rows, list):
        raise ValueError(f"'prices' is not a list: {type(rows).__name__}")
    prices: List[MarketPrice] = []
    for idx, row in enumerate(rows):
        if not isinstance(row, dict):
            logger.warning("[market] dropping row %d: not an object", idx)
            continue
        try:
            prices.append(MarketPrice(**row))
        except SchemaError as e:
            logger.warning("[market] dropping row %d (%s): %s", idx, row.get("commodity"), e.errors()[0].get("msg"))
    return prices


async def get_market_prices(location: str, client=None) -> List[MarketPrice]:
    """Return commodity prices for `location` in upstream order (may be empty)."""
    if not location or not location.strip():
        raise ValidationError("Please enter a location.")
    location = location.strip()
    if client is None:
        client = gemini.get_client()

    try:
        response = await client.aio.models.generate_content(
            model=gemini.text_model(),
            contents=f"Get market prices for {location}",
            config=types.GenerateContentConfig(
                system_instruction=market_instruction(location),
                response_mime_type="application/json",
                response_schema=MARKET_SCHEMA,
            ),
        )
        data: Dict[str, Any] = gemini.extract_json_object(response.text)
        prices = _normalize_rows(data.get("prices") or [])
    except Exception as e:
        logger.error("[market] price lookup failed for %r: %s", location, e)
        raise UpstreamFailure(FAILURE_MESSAGE, detail=str(e)) from e

    logger.info("[market] %d prices for %r", len(prices), location)
    return prices
