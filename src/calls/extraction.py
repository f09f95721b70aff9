"""Deterministic lead field extraction from transcript entries.

Plain pattern matches over normalized text; English and Hebrew phrasings
are recognized.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field

from calls.schemas import LeadRecord

LOGGER = logging.getLogger(__name__)

_HEBREW_MARKS = re.compile(r"[\u0591-\u05C7]")
_BIDI_MARKS = re.compile(r"[\u200e\u200f\u202a-\u202e\u2066-\u2069]")
_PUNCT_MAP = str.maketrans(
    {"\u05f3": "'", "\u05f4": "\"", "\u2019": "'", "\u2018": "'", "\u201c": "\"", "\u201d": "\"", "\u2013": "-", "\u2014": "-"}
)

WITHHELD_CALLER_IDS = {"anonymous", "restricted", "unavailable", "unknown", "private", "withheld"}

_NAME_PHRASE = r"(?<!\w)(?:my name is|my name's|this is|i am|i'm|קוראים לי|השם שלי(?:\s+זה)?|שמי|אני)"
_NAME_PATTERN = re.compile(_NAME_PHRASE + r"\s+([^\n,.!?;]{1,40})", re.IGNORECASE)
_NAME_TAIL_CONNECTOR = re.compile(r"^\s*,?\s*(?:(?:and|so)\s+)?", re.IGNORECASE)
_NAME_QUESTION = re.compile(
    r"(?:what(?:'s| is) your (?:full )?name|may i have your name|who am i speaking with|מה\s*השם|איך קוראים ל)",
    re.IGNORECASE,
)

# Tokens that end a name inside a longer sentence.
_NAME_STOP = {"and", "but", "please", "i", "from", "calling", "with", "about", "regarding", "so"}

# Words that follow "this is" / "I'm" without being a name.
_NOT_A_NAME = {
    "a", "about", "an", "calling", "fine", "for", "good", "here", "interested", "just",
    "looking", "not", "ok", "okay", "regarding", "really", "so", "sorry", "the", "to",
    "trying", "urgent", "very", "wondering", "going", "sure", "glad", "happy", "afraid",
    "in", "at", "on", "still", "also", "your", "my", "it", "that", "yes", "no", "hello", "hi",
    "מתקשר", "מתקשרת", "רוצה", "צריך", "צריכה", "לא", "פה", "כאן",
}

_CALLBACK_INTENT = re.compile(
    r"(?:call me back|call back|get back to me|give me a call|ring me back|"
    r"לחזור\s+אל(?:י|יי)|תחזור\s+אל(?:י|יי)|שיחזרו\s+אל(?:י|יי)|תתקשר(?:ו)?\s+אל(?:י|יי))",
    re.IGNORECASE,
)

_DIGIT_WORDS = {
    "zero": "0", "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
    "אפס": "0", "אחת": "1", "אחד": "1", "שתיים": "2", "שתים": "2", "שניים": "2", "שנים": "2",
    "שלוש": "3", "ארבע": "4", "חמש": "5", "שש": "6", "שבע": "7", "שמונה": "8", "תשע": "9",
}
_DIGIT_WORD_PATTERN = re.compile(
    r"(?<!\w)(" + "|".join(sorted(_DIGIT_WORDS, key=len, reverse=True)) + r")(?!\w)",
    re.IGNORECASE,
)
_PHONE_RUN = re.compile(r"\+?\d(?:[\s-]*\d){4,}")
_PHONE_LEAD_IN = re.compile(
    r"(?<!\w)(?:(?:my|the)\s+)?(?:phone\s+|cell\s+)?number(?:\s+is)?|(?:you can )?reach me (?:at|on)|it's|it is|"
    r"המספר(?:\s+שלי)?(?:\s+הוא)?|הטלפון(?:\s+שלי)?(?:\s+הוא)?",
    re.IGNORECASE,
)


def normalize_text(text: str) -> str:
    """NFKC, strip Hebrew points and bidi marks, unify punctuation and spaces."""

    value = unicodedata.normalize("NFKC", text or "")
    value = _HEBREW_MARKS.sub("", value)
    value = _BIDI_MARKS.sub("", value)
    value = value.translate(_PUNCT_MAP)
    return re.sub(r"\s+", " ", value).strip()


def spoken_digits_to_digits(text: str) -> str:
    return _DIGIT_WORD_PATTERN.sub(lambda m: _DIGIT_WORDS[m.group(1).lower()], text)


def normalize_phone_digits(digits: str, country_code: str) -> str | None:
    """Map a 9-13 digit run to international format when the shape is known."""

    if not 9 <= len(digits) <= 13:
        return None
    if digits.startswith(country_code) and len(digits) == len(country_code) + 9:
        return f"+{digits}"
    if digits.startswith("0") and len(digits) == 10:
        return f"+{country_code}{digits[1:]}"
    return digits


def normalize_caller_id(raw: str | None, country_code: str) -> tuple[str | None, bool]:
    """Return ``(number, withheld)`` for a transport caller identifier."""

    value = (raw or "").strip()
    if not value or value.lower() in WITHHELD_CALLER_IDS:
        return None, True
    digits = re.sub(r"\D", "", value)
    if len(digits) < 5:
        return None, True
    if value.startswith("+"):
        return f"+{digits}", False
    return normalize_phone_digits(digits, country_code) or digits, False


def extract_phone(text: str, country_code: str) -> str | None:
    digits = re.sub(r"\D", "", spoken_digits_to_digits(normalize_text(text)))
    if not digits:
        return None
    return normalize_phone_digits(digits, country_code)


def _name_tokens(candidate: str) -> list[re.Match[str]]:
    tokens: list[re.Match[str]] = []
    for token in re.finditer(r"\S+", candidate):
        if token.group().lower() in _NAME_STOP or len(tokens) == 3:
            break
        tokens.append(token)
    return tokens


def _clean_name(candidate: str) -> str:
    tokens = [token.group() for token in _name_tokens(candidate)]
    if not tokens or tokens[0].lower() in _NOT_A_NAME:
        return ""
    name = " ".join(tokens).strip("\"'-")
    if any(ch.isdigit() for ch in name):
        return ""
    if name.isascii() and name.islower():
        name = name.title()
    return name


def _accepted_name_spans(text: str) -> list[tuple[int, int, str]]:
    """``(start, end, name)`` of each introduction phrase plus the name it gives."""

    spans: list[tuple[int, int, str]] = []
    for match in _NAME_PATTERN.finditer(text):
        name = _clean_name(match.group(1))
        if not name:
            continue
        last = _name_tokens(match.group(1))[-1]
        spans.append((match.start(), match.start(1) + last.end(), name))
    return spans


def extract_name_phrase(text: str) -> str:
    """Name from an explicit self-introduction ("my name is ...", "קוראים לי ...")."""

    spans = _accepted_name_spans(normalize_text(text))
    return spans[0][2] if spans else ""


def extract_short_reply_name(text: str) -> str:
    """Bare name given as answer to the bot's name question."""

    compact = re.sub(r"[\"'`.,!?;:()\[\]{}<>]", "", normalize_text(text)).strip()
    if not compact or len(compact) > 30 or any(ch.isdigit() for ch in compact):
        return ""
    if len(compact.split()) > 3 or re.fullmatch(r"\[?noise\]?", compact, re.IGNORECASE):
        return ""
    return _clean_name(compact)


def strip_name_phrases(text: str) -> str:
    """Remove self-introductions, keeping whatever else the sentence says."""

    value = text
    for start, end, _ in reversed(_accepted_name_spans(text)):
        rest = _NAME_TAIL_CONNECTOR.sub("", value[end:], count=1)
        value = value[:start] + " " + rest
    value = re.sub(r"\s+([,.!?;])", r"\1", value)
    return re.sub(r"\s+", " ", value).strip(" ,.;")


def strip_phone_numbers(text: str) -> str:
    """Drop spoken or written digit runs and the words that introduce them."""

    value = spoken_digits_to_digits(text)
    without = _PHONE_RUN.sub(" ", value)
    if without != value:
        without = _PHONE_LEAD_IN.sub(" ", without)
    return re.sub(r"\s+", " ", without).strip(" ,.")


def is_callback_intent(text: str) -> bool:
    return bool(_CALLBACK_INTENT.search(text or ""))


def subject_is_informative(text: str, min_words: int) -> bool:
    candidate = (text or "").strip()
    if len(candidate.split()) >= min_words and len(candidate) >= 6:
        return True
    return is_callback_intent(candidate)


@dataclass(slots=True)
class LeadExtractor:
    """Applies the capture rules to each transcript entry as it arrives."""

    lead: LeadRecord = field(default_factory=LeadRecord)
    caller_withheld: bool = True
    subject_min_words: int = 3
    country_code: str = "972"
    awaiting_name: bool = False

    def observe_assistant(self, text: str) -> None:
        if _NAME_QUESTION.search(normalize_text(text)):
            self.awaiting_name = True

    def observe_caller(self, text: str) -> list[str]:
        value = normalize_text(text)
        if not value:
            return []
        captured: list[str] = []
        subject_source = value

        if not self.lead.full_name:
            name = extract_name_phrase(value)
            if name:
                subject_source = strip_name_phrases(value)
            elif self.awaiting_name:
                name = extract_short_reply_name(value)
                if name:
                    subject_source = ""
            if name:
                self.lead.full_name = name
                self.awaiting_name = False
                captured.append("full_name")
        elif _NAME_PATTERN.search(value):
            subject_source = strip_name_phrases(value) or value

        if self.lead.full_name and not self.lead.subject and subject_source:
            if subject_is_informative(strip_phone_numbers(subject_source), self.subject_min_words):
                self.lead.subject = subject_source
                captured.append("subject")

        if self.caller_withheld and not self.lead.callback_to_number:
            phone = extract_phone(value, self.country_code)
            if phone:
                self.lead.callback_to_number = phone
                captured.append("callback_to_number")

        if captured:
            LOGGER.debug("Lead fields captured: %s", ", ".join(captured))
        return captured
