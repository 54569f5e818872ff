"""
Soil Analysis Agent

Reads a photograph of soil taken by the camera and returns a visual
composition estimate (type, texture, likely pH, nutrients) with practical
recommendations in the farmer's language.
"""
import logging
from typing import Optional, Union

from google.genai import types

from ..errors import UpstreamFailure
from ..services import gemini
from .schemas import SoilAnalysisResult

logger = logging.getLogger(__name__)

SOIL_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "soilType": types.Schema(type=types.Type.STRING),
        "texture": types.Schema(type=types.Type.STRING),
        "potentialPH": types.Schema(type=types.Type.STRING),
        "nutrientStatus": types.Schema(type=types.Type.STRING),
        "recommendations": types.Schema(type=types.Type.STRING),
    },
    required=["soilType", "texture", "potentialPH", "nutrientStatus", "recommendations"],
)

FAILURE_MESSAGE = "Failed to analyze soil. Please try again with a clearer picture."


def soil_instruction(language: str) -> str:
    return f"""You are a soil science expert analyzing a photograph of soil for a farmer.
Focus ONLY on soil properties visible in the image; do not discuss crop diseases.
Your final output must be a JSON object with the following string properties, all written in {language}:
- "soilType": the most likely soil type (e.g., "Black cotton soil", "Red laterite", "Alluvial").
- "texture": visual texture assessment (sandy, loamy, clayey, silty or a combination).
- "potentialPH": the likely pH range with a short explanation (e.g., "Slightly alkaline (7.5-8.0)").
- "nutrientStatus": likely organic matter and nutrient levels based on colour and structure.
- "recommendations": 3 to 5 practical, low-cost improvements, one per line, each line starting with "- ".
Be conservative: this is a visual estimate, so suggest a lab soil test where it matters.
Do not include any introductory text, just the JSON object."""


async def get_soil_analysis(
    image: Union[str, bytes], language: str, client=None, mime_type: Optional[str] = None
) -> SoilAnalysisResult:
    """Analyze a captured frame (data URI, base64 or raw bytes).

    `mime_type` describes raw or base64 input; it defaults to JPEG.
    """
    data, mime_type = gemini.split_data_uri(image, mime_type)
    data, mime_type = gemini.prepare_image(data, mime_type)
    if client is None:
        client = gemini.get_client()

    try:
        response = await client.aio.models.generate_content(
            model=gemini.text_model(),
            contents=[
                types.Part.from_bytes(data=data, mime_type=mime_type),
                "Analyze the soil in this image.",
            ],
            config=types.GenerateContentConfig(
                system_instruction=soil_instruction(language),
                response_mime_type="application/json",
                response_schema=SOIL_SCHEMA,
            ),
        )
        result = SoilAnalysisResult(**gemini.extract_json_object(response.text))
    except Exception as e:
        logger.error("[soil] analysis failed (%d bytes %s): %s", len(data), mime_type, e)
        raise UpstreamFailure(FAILURE_MESSAGE, detail=str(e)) from e

    logger.info("[soil] analysis ready: %s / %s", result.soilType, result.texture)
    return result
