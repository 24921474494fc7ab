"""Voice archetypes and speaker-to-voice resolution."""

import json
import logging
import os
import re

from narriva.models import Segment

logger = logging.getLogger(__name__)

# ElevenLabs voices per character archetype
VOICE_ARCHETYPES = {
    "narrator": "joshua",
    "narratorFemale": "elli",
    "adultMale": "adam",
    "adultFemale": "rachel",
    "youngMale": "thomas",
    "youngFemale": "charlie",
    "elderlyMale": "douglas",
    "elderlyFemale": "domi",
    "mystical": "bella",
    "monster": "josh",
}

# Edge neural voices per character archetype (no API key needed)
EDGE_VOICE_ARCHETYPES = {
    "narrator": "en-US-RogerNeural",
    "narratorFemale": "en-US-AriaNeural",
    "adultMale": "en-US-DavisNeural",
    "adultFemale": "en-US-JennyNeural",
    "youngMale": "en-CA-LiamNeural",
    "youngFemale": "en-US-SaraNeural",
    "elderlyMale": "en-GB-ThomasNeural",
    "elderlyFemale": "en-GB-SoniaNeural",
    "mystical": "en-IE-EmilyNeural",
    "monster": "en-US-TonyNeural",
}

_PROVIDER_ARCHETYPES = {
    "elevenlabs": VOICE_ARCHETYPES,
    "edge": EDGE_VOICE_ARCHETYPES,
}

FEMALE_KEYWORDS = (
    "woman", "girl", "lady", "mrs", "ms", "miss", "mother", "sister",
    "aunt", "queen", "princess",
)
YOUNG_FEMALE_KEYWORDS = ("young", "girl", "child", "daughter")
ELDERLY_FEMALE_KEYWORDS = ("old", "elder", "ancient", "grandmother", "granny")

MALE_KEYWORDS = (
    "man", "boy", "sir", "mr", "father", "brother", "uncle", "king", "prince",
)
YOUNG_MALE_KEYWORDS = ("young", "boy", "child", "son")
ELDERLY_MALE_KEYWORDS = ("old", "elder", "ancient", "grandfather", "grandpa")

MYSTICAL_KEYWORDS = (
    "wizard", "witch", "fairy", "elf", "dwarf", "spirit", "ghost", "magic",
)
MONSTER_KEYWORDS = (
    "monster", "creature", "beast", "dragon", "troll", "goblin", "orc",
    "villain", "demon",
)

# Short honorifics only count as whole words, unlike the other keywords:
# plain substring matching would make "Williams" and "Adams" female.
_HONORIFICS = {"mr", "mrs", "ms", "sir"}


def archetypes_for(provider: str) -> dict:
    """Default archetype table for a remote provider."""
    return dict(_PROVIDER_ARCHETYPES.get(provider, VOICE_ARCHETYPES))


def load_archetypes(path: str, defaults: dict | None = None) -> dict:
    """Load an archetype table from JSON, merged over the defaults.

    Returns the defaults if the file is missing or malformed.
    """
    table = dict(defaults if defaults is not None else VOICE_ARCHETYPES)
    if not os.path.exists(path):
        return table
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError:
        logger.warning("Malformed archetype file: %s, using defaults", path)
        return table
    if not isinstance(data, dict):
        logger.warning("Archetype file %s is not a JSON object, using defaults", path)
        return table
    table.update({str(k): str(v) for k, v in data.items()})
    return table


def _mentions(label: str, keywords: tuple) -> bool:
    words = set(re.findall(r"[a-z]+", label))
    for keyword in keywords:
        if keyword in _HONORIFICS:
            if keyword in words:
                return True
        elif keyword in label:
            return True
    return False


def resolve_voice(speaker: str | None, archetypes: dict | None = None) -> str:
    """Map a speaker label to a voice id.

    Priority: female (young, elderly, adult) → male (young, elderly,
    adult) → mystical → monster → narrator. None is the narrator.
    """
    table = archetypes if archetypes is not None else VOICE_ARCHETYPES
    if speaker is None:
        return table["narrator"]

    label = speaker.lower()

    if _mentions(label, FEMALE_KEYWORDS):
        if _mentions(label, YOUNG_FEMALE_KEYWORDS):
            return table["youngFemale"]
        if _mentions(label, ELDERLY_FEMALE_KEYWORDS):
            return table["elderlyFemale"]
        return table["adultFemale"]

    if _mentions(label, MALE_KEYWORDS):
        if _mentions(label, YOUNG_MALE_KEYWORDS):
            return table["youngMale"]
        if _mentions(label, ELDERLY_MALE_KEYWORDS):
            return table["elderlyMale"]
        return table["adultMale"]

    if _mentions(label, MYSTICAL_KEYWORDS):
        return table["mystical"]

    if _mentions(label, MONSTER_KEYWORDS):
        return table["monster"]

    return table["narrator"]


def assign_voices(
    segments: list[Segment],
    base_voice: str,
    archetypes: dict | None = None,
) -> None:
    """Assign voices to all segments in-place.

    Narrator text gets the base voice; dialogue is resolved by speaker.
    """
    for seg in segments:
        if seg.speaker is None:
            seg.voice = base_voice
        else:
            seg.voice = resolve_voice(seg.speaker, archetypes)
