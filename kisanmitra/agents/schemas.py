"""
Value models returned by the advisory, market and soil agents.

Field names follow the JSON the browser client renders (camelCase), the
same way the vision diagnostic models do.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Language(BaseModel):
    code: str
    name: str


class Advisory(BaseModel):
    text: str = Field(..., min_length=1)
    imageUrl: Optional[str] = None


class MarketPrice(BaseModel):
    """One commodity row; prices are rupees per quintal (100 kg)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    commodity: str = Field(..., min_length=1)
    variety: str = Field(..., min_length=1)
    market: str = Field(..., min_length=1)
    minPrice: float = Field(..., ge=0)
    maxPrice: float = Field(..., ge=0)

    @model_validator(mode="after")
    def _check_range(self) -> "MarketPrice":
        if self.minPrice > self.maxPrice:
            raise ValueError(f"minPrice {self.minPrice} exceeds maxPrice {self.maxPrice}")
        return self


class MarketPricesResponse(BaseModel):
    prices: List[MarketPrice] = Field(default_factory=list)
    message: Optional[str] = None


class SoilAnalysisResult(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    soilType: str = Field(..., min_length=1)
    texture: str = Field(..., min_length=1)
    potentialPH: str = Field(..., min_length=1)
    nutrientStatus: str = Field(..., min_length=1)
    recommendations: str = Field(..., min_length=1)

    def recommendation_items(self) -> List[str]:
        """Split the newline-delimited recommendations into bullet items."""
        items = []
        for line in self.recommendations.split("\n"):
            line = line.strip()
            if line.startswith("- "):
                line = line[2:].strip()
            if line:
                items.append(line)
        return items
