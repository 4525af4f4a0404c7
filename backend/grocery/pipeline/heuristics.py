"""Heuristic ingredient extraction from free text.

Last-resort recovery when a model reply cannot be validated, or when a meal
came back without its ingredient list and the ingredients only appear in
prose. Four layers:

1. Line classification: list-marker and comma-dense lines are split into
   candidates, short lines are taken whole, everything else is ignored.
2. Token cleaning: quantities, units, bracketed notes and stray punctuation
   are removed.
3. Context-checked merge: adjacent single-word candidates are joined into a
   multi-word name only when that exact phrase occurs in the meal name or
   the source text.
4. Scoped windows: a meal's ingredients are read only from the text that
   follows the meal's name, up to the next heading or blank line.
"""

from __future__ import annotations

import re

import structlog

from grocery.errors import ExtractionFailure
from grocery.models.contracts import dedupe_casefold

log = structlog.get_logger("heuristics")

MEAL_WINDOW_CHARS = 1000
MAX_ITEM_WORDS = 5
SHORT_LINE_WORDS = 4
SHORT_LINE_CHARS = 60
MIN_SEPARATOR_DENSITY = 0.25  # separators per word for a prose line to count as a list

_UNITS = (
    r"kg|kilograms?|g|grams?|mg|oz|ounces?|lbs?|pounds?"
    r"|ml|millilit(?:er|re)s?|cl|dl|l|lit(?:er|re)s?"
    r"|cups?|tbsps?|tablespoons?|tsps?|teaspoons?|pints?|quarts?|gallons?|fl\.?\s?oz"
    r"|cloves?|cans?|tins?|jars?|bottles?|pieces?|pcs|slices?|bunch(?:es)?|pinch(?:es)?"
    r"|dash(?:es)?|handfuls?|packs?|packets?|packages?|sticks?|heads?|sprigs?|stalks?"
    r"|fillets?|dozen|bags?|boxes?"
)
_SIZES = r"small|medium|large|extra[- ]large"
_NUMBER = r"(?:\d+\s+\d+/\d+|\d+(?:[.,/]\d+)?|[½¼¾⅓⅔⅛])"

_QUANTITY_PREFIX = re.compile(
    rf"^(?:about|approx\.?|approximately|~)?\s*{_NUMBER}"
    rf"(?:\s*(?:-|–|to)\s*{_NUMBER})?"
    # the number must stand alone or carry a unit; "7up" is a product name
    rf"(?=\s|$|(?:{_UNITS})\.?(?!\w)|x\s)"
    rf"\s*(?:x\s+)?"
    rf"(?:(?:{_UNITS})\.?(?![\w]))?"
    rf"\s*(?:(?:{_SIZES})(?![\w]))?"
    rf"\s*(?:of\s+)?",
    re.IGNORECASE,
)
_BRACKETED = re.compile(r"\([^)]*\)|\[[^\]]*\]")
_LIST_MARKER = re.compile(r"^\s*(?:[-*•·+]+|\d+[.)])\s+")
_LEADING_DIGIT = re.compile(r"^\s*[\d½¼¾⅓⅔⅛]")
_SEPARATORS = re.compile(r"[,;]")
_LABEL_PREFIX = re.compile(r"^([A-Za-z][\w '&/]{0,30}):\s+(.+)$")
_HEADING_LINE = re.compile(
    r"^(?:#{1,6}\s*\S.*|\*\*[^*]+\*\*:?|[A-Za-z][\w '&/,()]{0,60}?\s*[:\-–])$"
)
_TRAILING_PUNCT = "\"'`.,;:!?*-–—_ "
_LEADING_PUNCT = "\"'`*_ "

SECTION_LABELS = frozenset(
    {
        "ingredients",
        "ingredient list",
        "instructions",
        "directions",
        "method",
        "steps",
        "notes",
        "note",
        "preparation",
        "shopping list",
        "meal plan",
        "you will need",
    }
)


def _title_case(phrase: str) -> str:
    return " ".join(w[:1].upper() + w[1:].lower() for w in phrase.split())


def clean_token(token: str) -> str:
    """Reduce a raw candidate like ``"2 cups (250g) basmati rice."`` to ``"basmati rice"``."""
    text = _BRACKETED.sub(" ", token)
    text = _LIST_MARKER.sub("", text)
    text = text.strip().strip(_LEADING_PUNCT)
    if text.lower().startswith("and "):
        text = text[4:]
    text = _QUANTITY_PREFIX.sub("", text, count=1)
    text = " ".join(text.split())
    return text.strip(_TRAILING_PUNCT).strip()


def _separator_density(line: str) -> float:
    words = len(line.split())
    if words == 0:
        return 0.0
    return len(_SEPARATORS.findall(line)) / words


def _is_section_label(text: str) -> bool:
    return text.strip(_TRAILING_PUNCT + "#").strip().lower() in SECTION_LABELS


def split_candidates(text: str) -> list[str]:
    """Classify lines and split the list-like ones into cleaned, deduplicated candidates."""
    candidates: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.endswith(":") or stripped.startswith("#"):
            continue

        has_marker = bool(_LIST_MARKER.match(stripped) or _LEADING_DIGIT.match(stripped))
        body = _LIST_MARKER.sub("", stripped)
        labelled = _LABEL_PREFIX.match(body)
        if labelled and len(labelled.group(1).split()) <= 3:
            body = labelled.group(2)

        if has_marker or _separator_density(body) >= MIN_SEPARATOR_DENSITY:
            raw_tokens = _SEPARATORS.split(body)
        elif len(stripped.split()) <= SHORT_LINE_WORDS and len(stripped) < SHORT_LINE_CHARS:
            raw_tokens = [body]
        else:
            continue

        for raw in raw_tokens:
            cleaned = clean_token(raw)
            if not cleaned or len(cleaned.split()) > MAX_ITEM_WORDS:
                continue
            if _is_section_label(cleaned):
                continue
            candidates.append(cleaned)

    return dedupe_casefold(candidates)


def _phrase_occurs(phrase: str, text: str) -> bool:
    """Whole-word, case-insensitive match; words may only be separated by spaces or tabs."""
    if not text:
        return False
    pattern = r"(?<!\w)" + r"[ \t]+".join(re.escape(w) for w in phrase.split()) + r"(?!\w)"
    return re.search(pattern, text, re.IGNORECASE) is not None


def merge_tokens(tokens: list[str], context: str, meal_name: str = "") -> list[str]:
    """Greedily rejoin single-word tokens into multi-word names, tri-grams first.

    A window is merged only if its phrase occurs in ``meal_name``, in
    ``context`` or as a multi-word token already in the stream. Merged
    phrases are title-cased; the result is deduplicated case-insensitively.
    """
    stream_phrases = [t for t in tokens if len(t.split()) > 1]
    merged: list[str] = []
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if len(token.split()) == 1:
            for size in (3, 2):
                window = tokens[i : i + size]
                if len(window) < size or any(len(w.split()) != 1 for w in window):
                    continue
                phrase = " ".join(window)
                if (
                    _phrase_occurs(phrase, meal_name)
                    or _phrase_occurs(phrase, context)
                    or any(p.casefold() == phrase.casefold() for p in stream_phrases)
                ):
                    merged.append(_title_case(phrase))
                    i += size
                    break
            else:
                merged.append(token)
                i += 1
            continue
        merged.append(token)
        i += 1
    return dedupe_casefold(merged)


def extract_items(text: str, meal_name: str = "", context: str | None = None) -> list[str]:
    """Recover an ingredient list from loose text.

    ``context`` is the text merges are checked against (defaults to
    ``text``). Raises ExtractionFailure when nothing usable is found.
    """
    candidates = split_candidates(text)
    if meal_name:
        candidates = [c for c in candidates if c.casefold() != meal_name.strip().casefold()]
    items = merge_tokens(candidates, text if context is None else context, meal_name)
    if not items:
        raise ExtractionFailure("no ingredient-like lines found")
    log.info("heuristic_items_extracted", count=len(items), meal=meal_name or None)
    return items


def _is_heading(line: str) -> bool:
    return bool(_HEADING_LINE.match(line)) and not _LIST_MARKER.match(line)


def meal_window(text: str, meal_name: str, max_chars: int = MEAL_WINDOW_CHARS) -> str | None:
    """Text belonging to ``meal_name``: from its first mention to the next heading or blank line.

    Capped at ``max_chars`` after the name. Section labels such as
    "Ingredients:" do not end the window; a blank line only ends it once
    some content has been collected. Returns None if the name never occurs.
    """
    name = meal_name.strip()
    if not name:
        return None
    start = text.casefold().find(name.casefold())
    if start == -1:
        return None

    raw = text[start + len(name) : start + len(name) + max_chars]
    first, _, rest = raw.partition("\n")
    kept = [first]
    has_content = bool(first.strip(_TRAILING_PUNCT))
    for line in rest.split("\n"):
        stripped = line.strip()
        if not stripped:
            if has_content:
                break
            continue
        if _is_heading(stripped) and not _is_section_label(stripped):
            break
        kept.append(line)
        if not _is_section_label(stripped):
            has_content = True
    return "\n".join(kept)


def extract_for_meal(text: str, meal_name: str, max_chars: int = MEAL_WINDOW_CHARS) -> list[str]:
    """Ingredients for one named meal out of an unstructured block."""
    window = meal_window(text, meal_name, max_chars)
    if window is None:
        raise ExtractionFailure(f"meal {meal_name!r} not found in text")
    return extract_items(window, meal_name, context=text)
