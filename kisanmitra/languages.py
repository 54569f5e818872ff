"""Languages offered for questions, answers and voice."""
from typing import List, Optional

from .agents.schemas import Language

DEFAULT_LANGUAGE_CODE = "en-US"
FALLBACK_LANGUAGE_NAME = "English"

LANGUAGES: List[Language] = [
    # Global
    Language(code="en-US", name="English (US)"),
    # Indian languages
    Language(code="hi-IN", name="हिन्दी (भारत)"),
    Language(code="bn-IN", name="বাংলা (ভারত)"),
    Language(code="te-IN", name="తెలుగు (భారతదేశం)"),
    Language(code="mr-IN", name="मराठी (भारत)"),
    Language(code="ta-IN", name="தமிழ் (இந்தியா)"),
    Language(code="ur-IN", name="اردو (بھارت)"),
    Language(code="gu-IN", name="ગુજરાતી (ભારત)"),
    Language(code="kn-IN", name="ಕನ್ನಡ (ಭಾರತ)"),
    Language(code="ml-IN", name="മലയാളം (ഇന്ത്യ)"),
    Language(code="pa-IN", name="ਪੰਜਾਬੀ (ਭਾਰਤ)"),
    Language(code="or-IN", name="ଓଡିଆ (ଭାରତ)"),
    # Other global languages
    Language(code="es-ES", name="Español (España)"),
    Language(code="fr-FR", name="Français (France)"),
    Language(code="zh-CN", name="中文 (中国大陆)"),
    Language(code="pt-BR", name="Português (Brasil)"),
]

_BY_CODE = {lang.code: lang for lang in LANGUAGES}


def find_language(code: Optional[str]) -> Optional[Language]:
    if not code:
        return None
    return _BY_CODE.get(code)


def language_name(code: Optional[str]) -> str:
    """Display name sent to the model; unknown codes fall back to English."""
    lang = find_language(code)
    return lang.name if lang else FALLBACK_LANGUAGE_NAME


def tts_language(code: Optional[str]) -> str:
    """Map a locale code (hi-IN) to the code gTTS expects (hi)."""
    code = code or DEFAULT_LANGUAGE_CODE
    if code == "zh-CN":
        return "zh-CN"
    return code.split("-")[0].lower()
