import base64

import pytest

from kisanmitra.agents.schemas import SoilAnalysisResult
from kisanmitra.agents.soil import FAILURE_MESSAGE, get_soil_analysis
from kisanmitra.errors import UpstreamFailure, ValidationError

pytestmark = pytest.mark.anyio

RAW = b"not-really-a-jpeg"

SOIL_REPLY = {
    "soilType": "Black cotton soil (Vertisol)",
    "texture": "Clayey",
    "potentialPH": "Slightly alkaline (7.5-8.2)",
    "nutrientStatus": "Moderate organic matter, likely low nitrogen",
    "recommendations": "- Add well-rotted farmyard manure\n- Grow a green manure crop\n\n- Get a lab soil test",
}


async def test_data_uri_prefix_is_stripped(fake_client):
    fake_client.models.content_replies.append(SOIL_REPLY)
    data_uri = "data:image/jpeg;base64," + base64.b64encode(RAW).decode("ascii")

    result = await get_soil_analysis(data_uri, "मराठी (भारत)")

    assert result.soilType.startswith("Black cotton")
    call = fake_client.models.content_calls[0]
    part = call["contents"][0]
    assert part.inline_data.data == RAW
    assert part.inline_data.mime_type == "image/jpeg"
    assert "मराठी (भारत)" in call["config"].system_instruction
    assert call["config"].response_mime_type == "application/json"


async def test_declared_mime_type_is_kept(fake_client):
    fake_client.models.content_replies.append(SOIL_REPLY)
    data_uri = "data:image/png;base64," + base64.b64encode(RAW).decode("ascii")

    await get_soil_analysis(data_uri, "English (US)")

    part = fake_client.models.content_calls[0]["contents"][0]
    assert part.inline_data.mime_type == "image/png"


async def test_raw_bytes_are_accepted(fake_client):
    fake_client.models.content_replies.append(SOIL_REPLY)

    result = await get_soil_analysis(RAW, "English (US)")

    assert result.texture == "Clayey"


async def test_raw_bytes_with_explicit_mime_type(fake_client):
    fake_client.models.content_replies.append(SOIL_REPLY)

    await get_soil_analysis(RAW, "English (US)", mime_type="image/png")

    part = fake_client.models.content_calls[0]["contents"][0]
    assert part.inline_data.mime_type == "image/png"


async def test_recommendation_items_are_split():
    result = SoilAnalysisResult(**SOIL_REPLY)

    assert result.recommendation_items() == [
        "Add well-rotted farmyard manure",
        "Grow a green manure crop",
        "Get a lab soil test",
    ]


async def test_missing_field_is_terminal(fake_client):
    reply = dict(SOIL_REPLY)
    del reply["potentialPH"]
    fake_client.models.content_replies.append(reply)

    with pytest.raises(UpstreamFailure) as excinfo:
        await get_soil_analysis(RAW, "English (US)")
    assert excinfo.value.message == FAILURE_MESSAGE


async def test_upstream_error_is_terminal(fake_client):
    fake_client.models.content_replies.append(ConnectionError("reset by peer"))

    with pytest.raises(UpstreamFailure):
        await get_soil_analysis(RAW, "English (US)")
    assert len(fake_client.models.content_calls) == 1


async def test_missing_image_is_rejected(fake_client):
    with pytest.raises(ValidationError):
        await get_soil_analysis("", "English (US)")
    with pytest.raises(ValidationError):
        await get_soil_analysis("data:image/jpeg;base64,@@@", "English (US)")
    assert fake_client.models.content_calls == []
