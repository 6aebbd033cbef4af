"""Turn one chat turn (text, receipt photo or voice note) into at most one transaction candidate."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import date as date_type
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence, Tuple

from dotenv import load_dotenv
import google.generativeai as genai
from pydantic import BaseModel, ValidationError, field_validator

from categories import FALLBACK_CATEGORY, normalize_category, prompt_category_lines

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"
API_KEY_ENV = "GOOGLE_GENERATIVE_AI_API_KEY"

SYSTEM_PROMPT = f"""
Kamu adalah asisten pencatat keuangan berbahasa Indonesia yang singkat dan tegas.

ATURAN:
- Jangan pernah bertanya balik. Selalu catat transaksi dengan tebakan terbaikmu.
- Jawab maksimal 1 kalimat konfirmasi, tanpa markdown (tanpa ** , * atau backtick).
- Nominal ditulis sebagai angka bulat dalam rupiah, tanpa titik atau koma.

KATEGORI PENGELUARAN:
{prompt_category_lines("expense")}

KATEGORI PEMASUKAN:
{prompt_category_lines("income")}

Jika tidak ada yang cocok:
{prompt_category_lines("other")}

FORMAT JAWABAN (WAJIB):
[1 kalimat konfirmasi]

[JSON]
{{"type":"expense|income","category":"kategori","amount":angka,"description":"deskripsi singkat","date":"YYYY-MM-DD atau null"}}
[/JSON]

CONTOH:
User: "makan soto 15rb"
Jawaban: Pengeluaran makan soto Rp15.000 sudah dicatat!

[JSON]
{{"type":"expense","category":"fnb","amount":15000,"description":"Makan soto","date":null}}
[/JSON]

User: "gaji 5 juta"
Jawaban: Pemasukan gaji Rp5.000.000 sudah dicatat!

[JSON]
{{"type":"income","category":"gaji","amount":5000000,"description":"Gaji","date":null}}
[/JSON]

Untuk foto struk: baca total belanja dan nama tokonya.
Untuk audio: dengarkan lalu ekstrak transaksinya. Jika audio tidak jelas, jawab
"Maaf, audio tidak jelas. Coba ketik manual." tanpa blok JSON.
""".strip()

ASSISTANT_ACK = "Siap! Saya akan langsung mencatat transaksi tanpa bertanya balik."

MEDIA_ONLY_MESSAGE = "Extract data"
IMAGE_HINT = "\n\n(Ekstrak data transaksi dari struk/gambar ini. Langsung catat tanpa bertanya.)"
AUDIO_HINT = "\n\n(Dengarkan audio ini dan ekstrak data transaksi. Langsung catat tanpa bertanya.)"

NOT_FOUND_HINT = " (Model not found. Please check API key permissions or region.)"

# Rupiah amounts group thousands with dots ("15.000"), US-style ones with commas.
DOT_GROUPED_AMOUNT = re.compile(r"^\d{1,3}(\.\d{3})+$")
COMMA_GROUPED_AMOUNT = re.compile(r"^\d{1,3}(,\d{3})+(\.\d+)?$")


class ConfigurationError(RuntimeError):
    """Raised when the generation service credentials are missing."""


class UpstreamServiceError(RuntimeError):
    """Raised when the generation service rejects or fails a request."""


# --- Input ---

@dataclass(frozen=True)
class Media:
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class ChatTurn:
    message: Optional[str] = None
    media: Optional[Media] = None

    def __post_init__(self):
        if not (self.message and self.message.strip()) and self.media is None:
            raise ValueError("A chat turn needs a message, media, or both")


def source_for(turn: ChatTurn) -> str:
    """Modality tag stored on transactions created from this turn."""
    if turn.media is not None:
        if turn.media.mime_type.startswith("image/"):
            return "ocr"
        if turn.media.mime_type.startswith("audio/"):
            return "voice"
    return "chat"


def build_turn_parts(turn: ChatTurn) -> List[Any]:
    """Message text first, then inline media, then a modality hint."""
    text = turn.message if turn.message and turn.message.strip() else MEDIA_ONLY_MESSAGE
    parts: List[Any] = [text]
    if turn.media is not None:
        parts.append({"mime_type": turn.media.mime_type, "data": turn.media.data})
        if turn.media.mime_type.startswith("image/"):
            parts.append(IMAGE_HINT)
        elif turn.media.mime_type.startswith("audio/"):
            parts.append(AUDIO_HINT)
    return parts


# --- Candidate ---

class Candidate(BaseModel):
    type: Literal["income", "expense"]
    category: str = FALLBACK_CATEGORY
    amount: int
    description: str = ""
    date: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("category", mode="before")
    @classmethod
    def _canonical_category(cls, v):
        return normalize_category(v if isinstance(v, str) else None)

    @field_validator("amount", mode="before")
    @classmethod
    def _whole_amount(cls, v):
        # Trust the model's number; only strip formatting and round.
        if isinstance(v, bool):
            raise ValueError("amount must be a number")
        if isinstance(v, str):
            v = v.strip().replace("_", "")
            if DOT_GROUPED_AMOUNT.match(v):
                v = v.replace(".", "")
            elif COMMA_GROUPED_AMOUNT.match(v):
                v = v.replace(",", "")
        try:
            return int(round(float(v)))
        except OverflowError:
            raise ValueError("amount must be finite")

    @field_validator("description", mode="before")
    @classmethod
    def _text_description(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("date", mode="before")
    @classmethod
    def _iso_date(cls, v):
        if v in (None, "", "null"):
            return None
        try:
            return date_type.fromisoformat(str(v).strip()[:10]).isoformat()
        except ValueError:
            return None


# --- Decoding ---

TAGGED_BLOCK = re.compile(r"\[JSON\]\s*(\{.*?\})\s*\[/JSON\]", re.DOTALL)
FENCED_BLOCK = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
BARE_OBJECT = re.compile(r"(\{.*?\"type\".*?\"amount\".*?\})", re.DOTALL)

_STRIP_PATTERNS = (
    re.compile(r"\[JSON\].*?\[/JSON\]", re.DOTALL),
    re.compile(r"```(?:json)?.*?```", re.DOTALL),
    re.compile(r"\{.*?\"type\".*?\"amount\".*?\}", re.DOTALL),
)

Strategy = Callable[[str], Optional[Candidate]]


def _candidate_from(pattern: re.Pattern, text: str) -> Optional[Candidate]:
    match = pattern.search(text)
    if not match:
        return None
    try:
        payload = json.loads(match.group(1))
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return Candidate.model_validate(payload)
    except ValidationError:
        return None


def from_tagged_block(text: str) -> Optional[Candidate]:
    return _candidate_from(TAGGED_BLOCK, text)


def from_fenced_block(text: str) -> Optional[Candidate]:
    return _candidate_from(FENCED_BLOCK, text)


def from_bare_object(text: str) -> Optional[Candidate]:
    return _candidate_from(BARE_OBJECT, text)


# Order matters: the explicit tag wins over a code fence, which wins over a scan.
EXTRACTION_STRATEGIES: Tuple[Strategy, ...] = (
    from_tagged_block,
    from_fenced_block,
    from_bare_object,
)


def strip_machine_blocks(text: str) -> str:
    for pattern in _STRIP_PATTERNS:
        text = pattern.sub("", text)
    return text.strip()


def decode_reply(text: str) -> Tuple[str, Optional[Candidate]]:
    """Split a model reply into the human acknowledgment and a candidate.

    When no strategy produces a candidate the text comes back untouched.
    """
    for strategy in EXTRACTION_STRATEGIES:
        candidate = strategy(text)
        if candidate is not None:
            return strip_machine_blocks(text), candidate
    logger.debug("No transaction block found in model reply")
    return text, None


# --- Generation service ---

class GenerationClient:
    """Interface of the hosted text/multimodal generation service."""

    def generate(self, system_instruction: str, history: Sequence[Dict[str, Any]], parts: Sequence[Any]) -> str:
        raise NotImplementedError


class GeminiClient(GenerationClient):
    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        self.api_key = api_key if api_key is not None else os.getenv(API_KEY_ENV)
        self.model_name = model_name or os.getenv("GEMINI_MODEL", DEFAULT_MODEL)

    def generate(self, system_instruction, history, parts):
        if not self.api_key:
            raise ConfigurationError("API Key missing")

        genai.configure(api_key=self.api_key)
        model = genai.GenerativeModel(self.model_name)
        chat = model.start_chat(
            history=[{"role": "user", "parts": [system_instruction]}, *history]
        )
        response = chat.send_message(list(parts))
        return response.text


def _upstream_message(exc: Exception) -> str:
    message = f"Failed: {exc}"
    lowered = str(exc).lower()
    if "404" in lowered or "not found" in lowered or "403" in lowered or "permission" in lowered:
        message += NOT_FOUND_HINT
    return message


# --- Pipeline ---

@dataclass
class ExtractionResult:
    reply: str
    transaction: Optional[Candidate]
    source: str


def extract_transaction(turn: ChatTurn, client: GenerationClient) -> ExtractionResult:
    """Run one single-shot extraction round trip.

    Raises ``ConfigurationError`` or ``UpstreamServiceError``; a reply that
    cannot be decoded is returned as plain text with no transaction.
    Persisting the candidate is the caller's job (see ``records.save_candidate``).
    """
    history = [{"role": "model", "parts": [ASSISTANT_ACK]}]
    try:
        text = client.generate(SYSTEM_PROMPT, history, build_turn_parts(turn))
    except ConfigurationError:
        raise
    except Exception as exc:
        logger.exception("Generation service call failed")
        raise UpstreamServiceError(_upstream_message(exc)) from exc

    reply, candidate = decode_reply(text or "")
    return ExtractionResult(reply=reply, transaction=candidate, source=source_for(turn))
