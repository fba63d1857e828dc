from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import re
import threading
import time
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import requests
from openai import APIError, OpenAI

from .config import TTSConfig, VoiceConfig

logger = logging.getLogger(__name__)

GOOGLE_TTS_ENDPOINT = "https://texttospeech.googleapis.com/v1/text:synthesize"
TARGET_SAMPLE_RATE = 44100

# (male, female) per provider
VOICE_PAIRS: Dict[str, Tuple[str, str]] = {
    "google": ("ja-JP-Neural2-C", "ja-JP-Neural2-B"),
    "openai": ("onyx", "nova"),
    "edge": ("ja-JP-KeitaNeural", "ja-JP-NanamiNeural"),
}


@dataclass(frozen=True)
class VoiceSelection:
    """Everything a provider needs to pick and shape a voice."""

    voice_name: str
    gender: str
    language_code: str
    speaking_rate: float
    pitch: float
    pronunciation_dict_path: Optional[Path] = None


def select_voice(gender: str, voice: VoiceConfig, tts: TTSConfig) -> VoiceSelection:
    gender = (gender or "female").lower()
    if gender not in ("male", "female"):
        raise ValueError(f"Unsupported voice gender: {gender}")
    provider = (tts.provider or "google").lower()
    if provider not in VOICE_PAIRS:
        raise ValueError(f"Unsupported TTS provider: {tts.provider}")
    male, female = VOICE_PAIRS[provider]
    if gender == "male":
        name = tts.male_voice or male
    else:
        name = tts.female_voice or female
    return VoiceSelection(
        voice_name=name,
        gender=gender,
        language_code=voice.language_code,
        speaking_rate=voice.speaking_rate,
        pitch=voice.pitch,
        pronunciation_dict_path=voice.pronunciation_dict_path,
    )


def normalize_for_matching(text: str) -> str:
    normalized = unicodedata.normalize("NFKC", text)
    normalized = re.sub("[ｰ‐―–—]", "ー", normalized)
    normalized = re.sub("[･·∙•]", "・", normalized)
    normalized = normalized.replace("　", " ")
    return re.sub(r"\s{2,}", " ", normalized)


class PronunciationDictionary:
    """Word -> reading replacements loaded from JSON, cached per absolute path."""

    _cache: Dict[Path, List[Tuple[re.Pattern, str]]] = {}
    _lock = threading.Lock()

    @classmethod
    def load(cls, path: Path) -> List[Tuple[re.Pattern, str]]:
        path = Path(path).resolve()
        with cls._lock:
            cached = cls._cache.get(path)
            if cached is not None:
                return cached
            raw = json.loads(path.read_text(encoding="utf-8"))
            entries = []
            for source, reading in raw.items():
                if not isinstance(source, str) or not isinstance(reading, str) or not source:
                    continue
                pattern = re.compile(re.escape(normalize_for_matching(source)), re.IGNORECASE)
                entries.append((pattern, reading))
            cls._cache[path] = entries
            logger.debug("Loaded %s pronunciation entries from %s", len(entries), path)
            return entries

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls._cache.clear()


def prepare_text(text: str, dict_path: Optional[Path]) -> str:
    processed = normalize_for_matching(text)
    if not dict_path:
        return processed
    try:
        entries = PronunciationDictionary.load(dict_path)
    except (OSError, ValueError, AttributeError) as exc:
        logger.warning("Failed to apply pronunciation dictionary %s: %s", dict_path, exc)
        return processed
    for pattern, reading in entries:
        processed = pattern.sub(lambda _match, r=reading: r, processed)
    return processed


class BaseTTS:
    def synthesize(self, text: str, voice: VoiceSelection, output_dir: Path, file_stem: str) -> Path:
        """Synthesize ``text`` and return the path of the written audio file."""

        raise NotImplementedError


class GoogleTTS(BaseTTS):
    """Google Cloud Text-to-Speech over its REST API with an API key."""

    def __init__(self, config: TTSConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.api_key = os.getenv(config.api_key_env or "GOOGLE_TTS_API_KEY")
        if not self.api_key:
            raise RuntimeError(
                f"Google TTS API key not found. Please set environment variable '{config.api_key_env or 'GOOGLE_TTS_API_KEY'}'."
            )
        self.endpoint = config.api_base or GOOGLE_TTS_ENDPOINT
        self.session = session or requests.Session()

    def synthesize(self, text: str, voice: VoiceSelection, output_dir: Path, file_stem: str) -> Path:
        audio_format = (self.config.format or "wav").lower()
        payload = {
            "input": {"text": prepare_text(text, voice.pronunciation_dict_path)},
            "voice": {"name": voice.voice_name, "languageCode": voice.language_code},
            "audioConfig": {
                "audioEncoding": "LINEAR16" if audio_format == "wav" else "MP3",
                "speakingRate": voice.speaking_rate,
                "pitch": voice.pitch,
                "sampleRateHertz": TARGET_SAMPLE_RATE,
            },
        }
        for attempt in range(1, self.config.max_retries + 1):
            try:
                response = self.session.post(
                    self.endpoint,
                    params={"key": self.api_key},
                    json=payload,
                    timeout=self.config.request_timeout,
                )
                if response.status_code >= 400:
                    logger.warning("Google TTS failed (HTTP %s): %s", response.status_code, response.text)
                    raise RuntimeError(f"Google TTS failed: {response.status_code}")
                audio_content = response.json().get("audioContent")
                if not audio_content:
                    raise RuntimeError("No audioContent in Google TTS response")
                break
            except (requests.RequestException, RuntimeError, ValueError) as exc:
                logger.warning("Google TTS attempt %s failed: %s", attempt, exc)
                if attempt >= self.config.max_retries:
                    raise
                time.sleep(self.config.retry_delay)

        output_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%dT%H%M%S%f")
        output_path = output_dir / f"{file_stem}-{stamp}.{audio_format}"
        output_path.write_bytes(base64.b64decode(audio_content))
        logger.debug("Saved Google TTS audio to %s", output_path)
        return output_path


class OpenAITTS(BaseTTS):
    """Use OpenAI's TTS models to generate narration audio."""

    def __init__(self, config: TTSConfig, client: Optional[OpenAI] = None):
        self.config = config
        if client is not None and config.api_base:
            logger.warning("Ignoring provided OpenAI client because custom api_base was supplied.")
            client = None
        kwargs = {}
        if config.api_base:
            kwargs["base_url"] = config.api_base
        if config.api_key_env:
            api_key = os.getenv(config.api_key_env)
            if api_key:
                kwargs["api_key"] = api_key
        self.client = client or OpenAI(**kwargs)

    def synthesize(self, text: str, voice: VoiceSelection, output_dir: Path, file_stem: str) -> Path:
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{file_stem}.{self.config.format}"
        for attempt in range(1, self.config.max_retries + 1):
            try:
                with self.client.audio.speech.with_streaming_response.create(
                    model=self.config.model,
                    voice=voice.voice_name,
                    input=prepare_text(text, voice.pronunciation_dict_path),
                    response_format=self.config.format,
                    speed=voice.speaking_rate,
                ) as response:
                    response.stream_to_file(output_path)
                logger.debug("Generated TTS segment at %s", output_path)
                return output_path
            except APIError as exc:
                logger.warning("TTS attempt %s failed: %s", attempt, exc)
                if attempt >= self.config.max_retries:
                    raise
                time.sleep(self.config.retry_delay)
        raise RuntimeError("Unreachable TTS retry loop")


class EdgeTTS(BaseTTS):
    """Use Microsoft Edge neural voices without requiring Azure credentials."""

    def __init__(self, config: TTSConfig):
        try:
            import edge_tts  # type: ignore
        except ImportError as exc:
            raise RuntimeError("edge-tts package is required for Edge TTS provider.") from exc
        self.edge_tts = edge_tts
        self.config = config

    def synthesize(self, text: str, voice: VoiceSelection, output_dir: Path, file_stem: str) -> Path:
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{file_stem}.mp3"
        self._run_async(self._synthesize_to_file(prepare_text(text, voice.pronunciation_dict_path), voice, output_path))
        return output_path

    async def _synthesize_to_file(self, text: str, voice: VoiceSelection, output_path: Path) -> None:
        communicate = self.edge_tts.Communicate(
            text=text,
            voice=voice.voice_name,
            rate=f"{round((voice.speaking_rate - 1.0) * 100):+d}%",
            pitch=f"{round(voice.pitch):+d}Hz",
        )
        with open(output_path, "wb") as outfile:
            async for chunk in communicate.stream():
                if chunk["type"] == "audio":
                    outfile.write(chunk["data"])
        logger.debug("Generated Edge TTS segment at %s", output_path)

    def _run_async(self, coroutine) -> None:
        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(coroutine)
        finally:
            loop.close()


def build_tts(config: TTSConfig, client: Optional[OpenAI] = None) -> BaseTTS:
    provider = (config.provider or "google").lower()
    if provider == "google":
        return GoogleTTS(config=config)
    if provider == "openai":
        return OpenAITTS(config=config, client=client)
    if provider == "edge":
        return EdgeTTS(config=config)
    raise ValueError(f"Unsupported TTS provider: {config.provider}")
