"""
Advisory Agent

Answers a farmer's free-text question with Markdown advice in the chosen
language plus, when a visual helps, one illustrative image. If the
structured request, its parsing or the image step fails, a single plain-text
request is made instead.
"""
import logging
from typing import Optional, Tuple

from google.genai import types

from ..errors import UpstreamFailure, ValidationError
from ..services import gemini
from .schemas import Advisory

logger = logging.getLogger(__name__)

ADVISOR_PERSONA = (
    "You are Kisan Mitra, an expert agricultural advisor AI. Your purpose is to provide "
    "farmers with clear, concise, and actionable advice based on their queries. Address the "
    "user directly and respectfully. Structure your answers with headings, bullet points, or "
    "numbered lists for maximum readability. If a query is about a specific crop, pest, or "
    "disease, provide scientific names where appropriate but explain them in simple terms. "
    "Always prioritize safe, sustainable, and economically viable farming practices."
)

ADVISORY_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "advice": types.Schema(type=types.Type.STRING),
        "imagePrompt": types.Schema(type=types.Type.STRING),
    },
    required=["advice", "imagePrompt"],
)

IMAGE_MIME_TYPE = "image/jpeg"
IMAGE_ASPECT_RATIO = "16:9"

FAILURE_MESSAGE = "Failed to fetch advisory from Gemini API."


def advisory_instruction(language: str) -> str:
    return f"""{ADVISOR_PERSONA}
Your final output must be a JSON object. The JSON object must have two properties:
1. "advice": (string) Your full advisory response, formatted in Markdown, in the {language} language.
2. "imagePrompt": (string) A concise, descriptive English prompt for an image generation model to create a photorealistic image relevant to the advice. For example, if the advice is about Colorado potato beetle, the prompt could be "A photorealistic close-up of a Colorado potato beetle on a green potato leaf". If no specific visual is relevant, return an empty string."""


def fallback_instruction(language: str) -> str:
    return f"{ADVISOR_PERSONA} Your response must be in well-formatted Markdown and written in {language}."


async def _structured_advice(client, query: str, language: str) -> Tuple[str, str]:
    response = await client.aio.models.generate_content(
        model=gemini.text_model(),
        contents=query,
        config=types.GenerateContentConfig(
            system_instruction=advisory_instruction(language),
            response_mime_type="application/json",
            response_schema=ADVISORY_SCHEMA,
        ),
    )
    data = gemini.extract_json_object(response.text)
    advice = data.get("advice")
    if not isinstance(advice, str) or not advice.strip():
        raise ValueError("structured reply has no advice text")
    image_prompt = data.get("imagePrompt") or ""
    if not isinstance(image_prompt, str):
        image_prompt = ""
    return advice, image_prompt.strip()


async def _illustrate(client, image_prompt: str) -> Optional[str]:
    response = await client.aio.models.generate_images(
        model=gemini.image_model(),
        prompt=image_prompt,
        config=types.GenerateImagesConfig(
            number_of_images=1,
            output_mime_type=IMAGE_MIME_TYPE,
            aspect_ratio=IMAGE_ASPECT_RATIO,
        ),
    )
    generated = getattr(response, "generated_images", None) or []
    if not generated:
        logger.info("[advisory] image model returned no images for prompt=%r", image_prompt[:80])
        return None
    image = generated[0].image
    image_bytes = getattr(image, "image_bytes", None) if image is not None else None
    if not image_bytes:
        return None
    if isinstance(image_bytes, str):
        # already base64 text
        return f"data:{IMAGE_MIME_TYPE};base64,{image_bytes}"
    return gemini.to_data_uri(image_bytes, IMAGE_MIME_TYPE)


async def _plain_advice(client, query: str, language: str) -> str:
    response = await client.aio.models.generate_content(
        model=gemini.text_model(),
        contents=query,
        config=types.GenerateContentConfig(system_instruction=fallback_instruction(language)),
    )
    text = (response.text or "").strip()
    if not text:
        raise ValueError("fallback reply was empty")
    return text


async def get_advisory(query: str, language: str, client=None) -> Advisory:
    """Return advice text and an optional image data URI for `query`.

    `language` is the display name the answer must be written in.
    Raises `ValidationError` for a blank query and `UpstreamFailure` when
    both the structured request and its plain-text fallback fail.
    """
    if not query or not query.strip():
        raise ValidationError("Please enter a question.")
    if client is None:
        client = gemini.get_client()

    try:
        advice, image_prompt = await _structured_advice(client, query, language)
        image_url = None
        if image_prompt and gemini.env_flag("ADVISORY_IMAGES"):
            image_url = await _illustrate(client, image_prompt)
        return Advisory(text=advice, imageUrl=image_url)
    except Exception as e:
        logger.warning("[advisory] structured advisory failed, using text-only fallback: %s", e)

    try:
        text = await _plain_advice(client, query, language)
    except Exception as e:
        logger.error("[advisory] fallback failed: %s", e)
        raise UpstreamFailure(FAILURE_MESSAGE, detail=str(e)) from e
    return Advisory(text=text, imageUrl=None)
