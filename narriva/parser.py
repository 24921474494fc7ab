"""Split story text into segments with speaker attribution."""

import re
from dataclasses import dataclass

from narriva.models import Segment
from narriva.constants import LOCAL_CHUNK_LENGTH

# Speech verbs for attribution detection
SPEECH_VERBS = (
    "said", "says", "asked", "replied", "answered", "responded",
    "remarked", "whispered", "murmured", "muttered", "shouted", "yelled",
    "exclaimed", "cried", "called", "growled", "hissed", "snapped",
    "sighed", "inquired", "stammered", "added",
)

_VERB = "(?:" + "|".join(re.escape(v) for v in SPEECH_VERBS) + r")\b"

# Capitalised name after a verb: said Tom / said Tom Sawyer; stops at "I", "He"...
_NAME = r"(?<![\w'-])[A-Z][\w'-]*(?:[ \t]+(?!(?:I|He|She|It|We|You|They)\b)[A-Z][\w'-]+)*"
# Name before a verb: Tom said / Mr. Hale said
_CTX_NAME = r"(?<![\w'-])(?:(?:Mr|Mrs|Ms|Dr)\.?[ \t]+)?[A-Z][\w'-]*"
# Words that end a descriptive speaker: "the guard at the gate", "the guard quietly"
_STOP_WORDS = (
    "a", "about", "across", "after", "again", "an", "and", "as", "at", "before",
    "behind", "beside", "but", "by", "for", "from", "had", "has", "her", "his",
    "in", "into", "is", "its", "my", "near", "not", "of", "on", "once", "onto",
    "or", "our", "over", "so", "than", "that", "the", "their", "then", "through",
    "to", "too", "under", "upon", "was", "when", "which", "while", "who", "with",
    "your",
)
_STOP = "(?:" + "|".join(_STOP_WORDS) + r"|[a-z]+ly)\b"
# Descriptive speaker: the guard / the old woman
_THE_NAME = rf"(?<![\w'-])[Tt]he[ \t]+[a-z]+(?:[ \t]+(?!{_STOP})[a-z]+)?"
_PRONOUN = r"(?<![\w'-])(?:[Hh]e|[Ss]he|[Tt]hey|[Ii]t|I|[Ww]e|[Yy]ou)"
_PRONOUNS = {"he", "she", "they", "it", "i", "we", "you"}
# Script-style label at line start: Tom: / Old Man: / Mr. Hale:
_LABEL = r"[A-Z][A-Za-z'.-]*(?:[ \t]+[A-Za-z'.-]+){0,2}"

# Label: "Quoted text"
_LABELED_QUOTE_RE = re.compile(
    rf'^[ \t]*({_LABEL})[ \t]*:[ \t]*"([^"]+)"',
    re.MULTILINE,
)

# Label: unquoted text (rest of the line)
_LABELED_LINE_RE = re.compile(
    rf'^[ \t]*({_LABEL})[ \t]*:[ \t]*([^"\s][^\n]*?)[ \t]*$',
    re.MULTILINE,
)

# "Quoted text," said Label
_QUOTE_SAID_RE = re.compile(
    rf'"([^"]+)"[ \t]*{_VERB}[ \t]+({_NAME}|{_THE_NAME})',
)

# Bare "quoted text"
_QUOTE_RE = re.compile(r'"([^"]+)"')

# Context around a bare quote: Tom whispered, "..." / "..." said Tom / "..." Tom said
_BEFORE_CONTEXT_RE = re.compile(rf'({_CTX_NAME}|{_THE_NAME})[ \t]+{_VERB}[^\w"]*$')
_AFTER_CONTEXT_RE = re.compile(
    rf'^[^\w"]*(?:{_VERB}[ \t]+({_NAME}|{_THE_NAME})|({_CTX_NAME}|{_THE_NAME})[ \t]+{_VERB})',
)

# Attribution remnants left in narration next to a quote
_LEADING_ATTRIBUTION_RE = re.compile(
    rf'^[\s,;:.!?-]*(?:(?:(?:{_PRONOUN}|{_CTX_NAME}|{_THE_NAME})[ \t]+{_VERB}'
    rf'|{_VERB}[ \t]+(?:{_PRONOUN}|{_NAME}|{_THE_NAME}))[ \t]*[,;:.!?-]*)?',
)
_TRAILING_ATTRIBUTION_RE = re.compile(
    rf'(?:{_PRONOUN}|{_CTX_NAME}|{_THE_NAME})[ \t]+{_VERB}[ \t,;:-]*$',
)

_WORD_RE = re.compile(r"\w")


@dataclass
class _Dialogue:
    start: int
    end: int
    text: str
    speaker: str | None


def split_paragraphs(text: str) -> list[str]:
    """Split text on blank lines, dropping whitespace-only paragraphs."""
    paragraphs = re.split(r"\n\s*\n", text.strip())
    return [p.strip() for p in paragraphs if p.strip()]


def _normalize_speaker(name: str | None) -> str | None:
    """Strip punctuation around a speaker name; pronouns are not names."""
    if not name:
        return None
    name = name.strip().rstrip(".,;:!?-").strip()
    if not name or name.lower() in _PRONOUNS:
        return None
    return name


def guess_speaker(before: str, after: str) -> str | None:
    """Guess who speaks a bare quote from the text right around it."""
    match = _BEFORE_CONTEXT_RE.search(before)
    if match:
        speaker = _normalize_speaker(match.group(1))
        if speaker:
            return speaker

    match = _AFTER_CONTEXT_RE.match(after)
    if match:
        return _normalize_speaker(match.group(1) or match.group(2))

    return None


def _labeled(regex: re.Pattern, paragraph: str) -> list[_Dialogue]:
    return [
        _Dialogue(m.start(), m.end(), m.group(2).strip(), _normalize_speaker(m.group(1)))
        for m in regex.finditer(paragraph)
        if m.group(2).strip()
    ]


def _quote_said(paragraph: str) -> list[_Dialogue]:
    return [
        _Dialogue(m.start(), m.end(), m.group(1).strip(), _normalize_speaker(m.group(2)))
        for m in _QUOTE_SAID_RE.finditer(paragraph)
        if m.group(1).strip()
    ]


def _bare_quotes(paragraph: str) -> list[_Dialogue]:
    matches = [m for m in _QUOTE_RE.finditer(paragraph) if m.group(1).strip()]
    dialogue = []
    for i, match in enumerate(matches):
        prev_end = matches[i - 1].end() if i > 0 else 0
        next_start = matches[i + 1].start() if i + 1 < len(matches) else len(paragraph)
        speaker = guess_speaker(
            paragraph[prev_end:match.start()],
            paragraph[match.end():next_start],
        )
        dialogue.append(_Dialogue(match.start(), match.end(), match.group(1).strip(), speaker))
    return dialogue


def _match_dialogue(paragraph: str) -> list[_Dialogue]:
    """Apply the dialogue patterns in order; the first that matches wins."""
    for extract in (
        lambda p: _labeled(_LABELED_QUOTE_RE, p),
        lambda p: _labeled(_LABELED_LINE_RE, p),
        _quote_said,
        _bare_quotes,
    ):
        dialogue = extract(paragraph)
        if dialogue:
            return dialogue
    return []


def _has_words(text: str) -> bool:
    return bool(_WORD_RE.search(text))


def attribute(text: str) -> list[Segment]:
    """Split story text into narrator and dialogue segments.

    Narration accumulates in a pending buffer that is flushed as a
    speaker-less segment right before each dialogue segment and at the end
    of the text. Attribution phrases next to a quote ("he said.",
    "Tom whispered,") are dropped from the narration.
    """
    segments: list[Segment] = []
    pending: list[str] = []

    def flush():
        if pending:
            segments.append(Segment(text="\n\n".join(pending)))
            pending.clear()

    for paragraph in split_paragraphs(text):
        dialogue = _match_dialogue(paragraph)
        if not dialogue:
            pending.append(paragraph)
            continue

        pos = 0
        for line in dialogue:
            before = paragraph[pos:line.start]
            if pos:
                before = _LEADING_ATTRIBUTION_RE.sub("", before, count=1)
            before = _TRAILING_ATTRIBUTION_RE.sub("", before, count=1).strip()
            if _has_words(before):
                pending.append(before)
            flush()
            segments.append(Segment(text=line.text, speaker=line.speaker))
            pos = line.end

        after = _LEADING_ATTRIBUTION_RE.sub("", paragraph[pos:], count=1).strip()
        if _has_words(after):
            pending.append(after)

    flush()
    return segments


def _split_words(sentence: str, max_length: int) -> list[str]:
    """Split an over-long sentence at word boundaries."""
    if len(sentence) <= max_length:
        return [sentence]

    pieces = []
    current = ""
    for word in sentence.split():
        while len(word) > max_length:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(word[:max_length])
            word = word[max_length:]
        if current and len(current) + len(word) + 1 > max_length:
            pieces.append(current)
            current = word
        else:
            current = f"{current} {word}" if current else word
    if current:
        pieces.append(current)
    return pieces


def split_text_for_speech(text: str, max_length: int = LOCAL_CHUNK_LENGTH) -> list[str]:
    """Split text into chunks short enough for the local speech engine.

    Chunks end on sentence boundaries where possible, otherwise on word
    boundaries; only a single word longer than max_length is cut.
    """
    max_length = max(1, max_length)
    text = text.strip()
    if len(text) <= max_length:
        return [text] if text else []

    chunks = []
    current = ""
    for sentence in re.split(r"(?<=[.!?])\s+", text):
        for piece in _split_words(sentence, max_length):
            if current and len(current) + len(piece) + 1 > max_length:
                chunks.append(current)
                current = piece
            else:
                current = f"{current} {piece}" if current else piece
    if current:
        chunks.append(current)
    return chunks
