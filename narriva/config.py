"""Narration settings from an optional JSON file and the environment."""

import json
import logging
import os
from dataclasses import dataclass, field

from narriva.constants import (
    CONFIG_ENV_VAR,
    DEFAULT_REMOTE_PROVIDER,
    ELEVENLABS_MODEL,
    ELEVENLABS_SIMILARITY_BOOST,
    ELEVENLABS_STABILITY,
    FALLBACK_REMOTE_PROVIDER,
    LOCAL_CHUNK_LENGTH,
)
from narriva.voices import archetypes_for, load_archetypes

logger = logging.getLogger(__name__)

REMOTE_PROVIDERS = ("elevenlabs", "edge")


@dataclass
class NarrivaConfig:
    remote_provider: str = DEFAULT_REMOTE_PROVIDER   # "elevenlabs" or "edge"
    elevenlabs_api_key: str | None = None
    elevenlabs_model: str = ELEVENLABS_MODEL
    stability: float = ELEVENLABS_STABILITY
    similarity_boost: float = ELEVENLABS_SIMILARITY_BOOST
    archetypes: dict = field(default_factory=lambda: archetypes_for(DEFAULT_REMOTE_PROVIDER))
    local_chunk_length: int = LOCAL_CHUNK_LENGTH


def _read_file(path: str) -> dict:
    if not os.path.exists(path):
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError:
        logger.warning("Malformed config file: %s, using defaults", path)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a JSON object, using defaults", path)
        return {}
    return data


def load_config(path: str | None = None) -> NarrivaConfig:
    """Build the configuration.

    Priority: environment → JSON file (path or $NARRIVA_CONFIG) → defaults.
    "archetypes" may be an object of overrides or the name of a separate
    JSON archetype file next to the config file.
    The provider defaults to ElevenLabs when an API key is available and
    to Edge voices otherwise.
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    data = _read_file(path) if path else {}

    api_key = os.environ.get("ELEVENLABS_API_KEY") or data.get("elevenlabs_api_key")
    provider = os.environ.get("NARRIVA_REMOTE_PROVIDER") or data.get("remote_provider")
    if not provider:
        provider = DEFAULT_REMOTE_PROVIDER if api_key else FALLBACK_REMOTE_PROVIDER
    if provider not in REMOTE_PROVIDERS:
        logger.warning("Unknown remote provider %r, using %s", provider, FALLBACK_REMOTE_PROVIDER)
        provider = FALLBACK_REMOTE_PROVIDER

    archetypes = archetypes_for(provider)
    overrides = data.get("archetypes", {})
    if isinstance(overrides, dict):
        archetypes.update({str(k): str(v) for k, v in overrides.items()})
    elif isinstance(overrides, str):
        # Path to a separate archetype file, relative to the config file
        archetype_path = os.path.join(os.path.dirname(path), overrides)
        archetypes = load_archetypes(archetype_path, archetypes)
    else:
        logger.warning("Ignoring archetypes in %s: expected an object or a file name", path)

    chunk_length = int(data.get("local_chunk_length", LOCAL_CHUNK_LENGTH))
    if chunk_length < 1:
        logger.warning(
            "Invalid local_chunk_length %d in %s, using %d", chunk_length, path, LOCAL_CHUNK_LENGTH,
        )
        chunk_length = LOCAL_CHUNK_LENGTH

    return NarrivaConfig(
        remote_provider=provider,
        elevenlabs_api_key=api_key,
        elevenlabs_model=data.get("elevenlabs_model", ELEVENLABS_MODEL),
        stability=float(data.get("stability", ELEVENLABS_STABILITY)),
        similarity_boost=float(data.get("similarity_boost", ELEVENLABS_SIMILARITY_BOOST)),
        archetypes=archetypes,
        local_chunk_length=chunk_length,
    )
