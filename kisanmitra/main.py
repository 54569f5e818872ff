import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from .agents import (
    NO_DATA_MESSAGE,
    Advisory,
    Language,
    MarketPricesResponse,
    SoilAnalysisResult,
    get_advisory,
    get_market_prices,
    get_soil_analysis,
)
from .errors import CapabilityUnavailable, KisanMitraError, ValidationError
from .languages import DEFAULT_LANGUAGE_CODE, LANGUAGES, language_name
from .presentation import KisanSession
from .sessions import SessionStore, tts_dir

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

sessions = SessionStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # release cameras and pending speech for every open page
    sessions.close_all()


app = FastAPI(title="Kisan Mitra API", version="0.3.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Read-aloud clips rendered by the speech service
os.makedirs(tts_dir(), exist_ok=True)
app.mount("/tts", StaticFiles(directory=tts_dir()), name="tts")


class AdvisoryRequest(BaseModel):
    query: str
    language: Optional[str] = DEFAULT_LANGUAGE_CODE  # locale code, e.g. "hi-IN"


class MarketPricesRequest(BaseModel):
    location: str


class SoilAnalysisRequest(BaseModel):
    image_base64: str  # data URI or bare base64 JPEG
    language: Optional[str] = DEFAULT_LANGUAGE_CODE


class LanguageRequest(BaseModel):
    code: str


class SessionAdvisoryRequest(BaseModel):
    query: Optional[str] = None


class SessionMarketRequest(BaseModel):
    location: Optional[str] = None


class SpeechEndedRequest(BaseModel):
    utterance_id: Optional[str] = None


def _http_error(e: KisanMitraError) -> HTTPException:
    if isinstance(e, ValidationError):
        status = 400
    elif isinstance(e, CapabilityUnavailable):
        status = 503
    else:
        status = 502
    return HTTPException(status_code=status, detail=e.message)


def _session(session_id: str) -> KisanSession:
    try:
        return sessions.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found")


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/api/languages", response_model=List[Language])
def list_languages():
    return LANGUAGES


# ---------------------------------------------------------------------------
# Stateless API
# ---------------------------------------------------------------------------

@app.post("/api/advisory", response_model=Advisory)
async def advisory(req: AdvisoryRequest):
    """Markdown advice for a farming question, with an optional illustration."""
    try:
        return await get_advisory(req.query, language_name(req.language))
    except KisanMitraError as e:
        raise _http_error(e)


@app.post("/api/market_prices", response_model=MarketPricesResponse)
async def market_prices(req: MarketPricesRequest):
    try:
        prices = await get_market_prices(req.location)
    except KisanMitraError as e:
        raise _http_error(e)
    return MarketPricesResponse(prices=prices, message=None if prices else NO_DATA_MESSAGE)


@app.post("/api/soil_analysis", response_model=SoilAnalysisResult)
async def soil_analysis(req: SoilAnalysisRequest):
    try:
        return await get_soil_analysis(req.image_base64, language_name(req.language))
    except KisanMitraError as e:
        raise _http_error(e)


@app.post("/api/soil_analysis/upload", response_model=SoilAnalysisResult)
async def soil_analysis_upload(file: UploadFile = File(...), language: str = DEFAULT_LANGUAGE_CODE):
    """Same as /api/soil_analysis for a multipart photo upload."""
    contents = await file.read()
    mime_type = file.content_type if (file.content_type or "").startswith("image/") else None
    try:
        return await get_soil_analysis(contents, language_name(language), mime_type=mime_type)
    except KisanMitraError as e:
        raise _http_error(e)


# ---------------------------------------------------------------------------
# Session API: one presentation state per open page
# ---------------------------------------------------------------------------

@app.post("/api/sessions")
def create_session() -> Dict[str, Any]:
    return sessions.create().snapshot()


@app.get("/api/sessions/{session_id}")
def get_session(session_id: str) -> Dict[str, Any]:
    return _session(session_id).snapshot()


@app.delete("/api/sessions/{session_id}")
def delete_session(session_id: str):
    if not sessions.close(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "closed"}


@app.put("/api/sessions/{session_id}/language")
def set_session_language(session_id: str, req: LanguageRequest) -> Dict[str, Any]:
    session = _session(session_id)
    try:
        changed = session.set_language(req.code)
    except ValidationError as e:
        raise _http_error(e)
    if not changed:
        logger.debug("[sessions] language change ignored for %s (busy)", session_id)
    return session.snapshot()


@app.post("/api/sessions/{session_id}/advisory")
async def session_advisory(session_id: str, req: SessionAdvisoryRequest) -> Dict[str, Any]:
    session = _session(session_id)
    await session.submit_advisory(req.query)
    return session.snapshot()


@app.post("/api/sessions/{session_id}/speech/listen")
def session_listen(session_id: str) -> Dict[str, Any]:
    session = _session(session_id)
    session.toggle_listening()
    return session.snapshot()


@app.post("/api/sessions/{session_id}/speech/audio")
async def session_audio(session_id: str, file: UploadFile = File(...)) -> Dict[str, Any]:
    session = _session(session_id)
    audio = await file.read()
    await session.accept_audio(audio, file.content_type or "audio/webm")
    return session.snapshot()


@app.post("/api/sessions/{session_id}/speech/read_aloud")
async def session_read_aloud(session_id: str) -> Dict[str, Any]:
    session = _session(session_id)
    await session.toggle_read_aloud()
    return session.snapshot()


@app.post("/api/sessions/{session_id}/speech/ended")
def session_speech_ended(session_id: str, req: SpeechEndedRequest) -> Dict[str, Any]:
    session = _session(session_id)
    session.speech_ended(req.utterance_id)
    return session.snapshot()


@app.post("/api/sessions/{session_id}/market_prices")
async def session_market_prices(session_id: str, req: SessionMarketRequest) -> Dict[str, Any]:
    session = _session(session_id)
    await session.submit_market_prices(req.location)
    return session.snapshot()


@app.post("/api/sessions/{session_id}/soil/camera/{action}")
async def session_camera(session_id: str, action: str) -> Dict[str, Any]:
    session = _session(session_id)
    if action == "open":
        await session.open_camera()
    elif action == "capture":
        await session.capture()
    elif action == "cancel":
        session.cancel_camera()
    elif action == "retake":
        await session.retake()
    else:
        raise HTTPException(status_code=404, detail=f"Unknown camera action: {action}")
    return session.snapshot()


@app.post("/api/sessions/{session_id}/soil/analyze")
async def session_analyze_soil(session_id: str) -> Dict[str, Any]:
    session = _session(session_id)
    await session.analyze_soil()
    return session.snapshot()
