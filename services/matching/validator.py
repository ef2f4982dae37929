"""Match validator: map noisy OCR output onto a whitelist of route identifiers.

Tiers, first hit wins:
1. normalized text shorter than 2 characters -> no match
2. exact whitelist membership
3. exact membership of any individual OCR word (first word wins)
4. whitelist entry contained in the text, entry length >= 50% of the text
5. text contained in a whitelist entry, text length >= 60% of the entry
6. Levenshtein distance <= 1 with length difference <= 1 (first best wins)
"""

import logging
import re
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

NO_MATCH = "none"

_NON_ALNUM = re.compile(r"[^0-9A-Za-z]")

MIN_TEXT_LENGTH = 2
CONTAINS_ENTRY_RATIO = 0.5
CONTAINED_TEXT_RATIO = 0.6
MAX_EDIT_DISTANCE = 1
MAX_LENGTH_DIFF = 1


def normalize_text(text: Optional[str]) -> str:
    """Strip everything but ASCII letters/digits and uppercase the rest."""
    if not text:
        return ""
    return _NON_ALNUM.sub("", text).upper()


def edit_distance(a: str, b: str) -> int:
    """Classic Levenshtein distance (unit insert/delete/substitute)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current[j] = min(
                previous[j] + 1,  # deletion
                current[j - 1] + 1,  # insertion
                previous[j - 1] + cost,  # substitution
            )
        previous = current
    return previous[-1]


def _normalize_whitelist(whitelist: Iterable[str]) -> List[str]:
    seen = set()
    entries = []
    for entry in whitelist:
        norm = normalize_text(entry)
        if norm and norm not in seen:
            seen.add(norm)
            entries.append(norm)
    return entries


def validate(
    raw_text: Optional[str],
    individual_words: Optional[Sequence[str]],
    whitelist: Iterable[str],
) -> str:
    """Return the whitelist identifier the OCR output stands for, or "none".

    Args:
        raw_text: full recognized text
        individual_words: tokenized recognized words (may be empty)
        whitelist: valid route identifiers, in priority order

    Returns:
        Normalized whitelist entry, or NO_MATCH
    """
    text = normalize_text(raw_text)
    if len(text) < MIN_TEXT_LENGTH:
        return NO_MATCH

    entries = _normalize_whitelist(whitelist)
    if not entries:
        return NO_MATCH
    entry_set = set(entries)

    if text in entry_set:
        return text

    for word in individual_words or []:
        norm_word = normalize_text(word)
        if norm_word in entry_set:
            logger.debug(f"Word match: '{word}' -> {norm_word}")
            return norm_word

    for entry in entries:
        if entry in text and len(entry) >= CONTAINS_ENTRY_RATIO * len(text):
            return entry

    for entry in entries:
        if text in entry and len(text) >= CONTAINED_TEXT_RATIO * len(entry):
            return entry

    best_entry = None
    best_distance = None
    for entry in entries:
        if abs(len(entry) - len(text)) > MAX_LENGTH_DIFF:
            continue
        distance = edit_distance(text, entry)
        if distance <= MAX_EDIT_DISTANCE and (best_distance is None or distance < best_distance):
            best_entry, best_distance = entry, distance

    if best_entry is not None:
        logger.debug(f"Fuzzy match: '{text}' -> {best_entry} (distance={best_distance})")
        return best_entry

    return NO_MATCH
