"""
Combo extraction — contiguous n-grams from title and subtitle tokens.

Windows of min..max tokens are taken per field. A window made only of
stopwords is discarded. Duplicates are removed by text within a field; across
fields the title copy wins and subtitle duplicates are flagged
incremental=False.
"""

import logging
import re
from typing import Iterable, List, Optional, Sequence, Set

from .models import Combo, ComboSet, ComboType, TextField, Token
from .tokenizer import normalize_text, tokenize

logger = logging.getLogger(__name__)

DEFAULT_MIN_LENGTH = 2
DEFAULT_MAX_LENGTH = 4

# Separators that split a brand name from the descriptive part of a title
_BRAND_SEPARATOR_RE = re.compile(r"\s*(?::|\||–|—|\s-\s)\s*")


def detect_brand_tokens(
    title: Optional[str],
    title_tokens: Sequence[Token],
    app_name: Optional[str] = None,
    brand_terms: Iterable[str] = (),
) -> Set[str]:
    """
    Work out which title tokens belong to the brand.

    An explicit app_name wins. Otherwise the segment before the first
    separator (":", "|", "–", " - ") is treated as the brand, keeping only its
    non-stopword tier-1 tokens so descriptive words and noise stay generic.
    Explicit brand_terms from the RuleSet are always included.
    """
    brand = {t.lower() for t in brand_terms if t}

    if app_name:
        brand.update(t.text for t in tokenize(app_name) if len(t.text) >= 2)
        return brand

    normalized = normalize_text(title)
    match = _BRAND_SEPARATOR_RE.search(normalized)
    if not match:
        return brand

    cutoff = match.start()
    for token in title_tokens:
        if token.end <= cutoff and not token.is_stopword and token.tier == 1:
            brand.add(token.text)
    return brand


def _combo_type(window: Sequence[Token], text: str, brand_tokens: Set[str], low_value_res) -> ComboType:
    content = [t for t in window if not t.is_stopword]
    if all(t.tier == 0 for t in content) or any(r.search(text) for r in low_value_res):
        return ComboType.LOW_VALUE
    if any(t.text in brand_tokens for t in window):
        return ComboType.BRANDED
    return ComboType.GENERIC


def _field_combos(
    tokens: Sequence[Token],
    field: TextField,
    min_length: int,
    max_length: int,
    brand_tokens: Set[str],
    low_value_res,
) -> List[Combo]:
    combos: List[Combo] = []
    seen: Set[str] = set()

    for start in range(len(tokens)):
        for length in range(min_length, max_length + 1):
            end = start + length
            if end > len(tokens):
                break
            window = tokens[start:end]
            if all(t.is_stopword for t in window):
                continue

            text = " ".join(t.text for t in window)
            if text in seen:
                continue
            seen.add(text)

            content = [t.tier for t in window if not t.is_stopword]
            combos.append(Combo(
                text=text,
                tokens=tuple(t.text for t in window),
                field=field,
                span=(window[0].start, window[-1].end),
                position=window[0].position,
                length=length,
                type=_combo_type(window, text, brand_tokens, low_value_res),
                relevance=round(sum(content) / len(content), 4),
            ))
    return combos


def extract_combos(
    title_tokens: Sequence[Token],
    subtitle_tokens: Sequence[Token] = (),
    min_length: int = DEFAULT_MIN_LENGTH,
    max_length: int = DEFAULT_MAX_LENGTH,
    brand_tokens: Iterable[str] = (),
    low_value_patterns: Iterable[str] = (),
) -> ComboSet:
    """
    Build the ComboSet for one listing.

    Args:
        title_tokens: Tokens of the title
        subtitle_tokens: Tokens of the subtitle (may be empty)
        min_length: Smallest window, in tokens
        max_length: Largest window, in tokens
        brand_tokens: Token texts that mark a combo as branded
        low_value_patterns: Regexes that mark a combo as low value

    Returns:
        ComboSet with title, subtitle and unique lists in extraction order
    """
    if min_length < 1 or max_length < min_length:
        raise ValueError(f"Invalid combo length range {min_length}..{max_length}")

    brand_set = set(brand_tokens)
    low_value_res = [re.compile(p) for p in low_value_patterns]

    title = _field_combos(title_tokens, TextField.TITLE, min_length, max_length, brand_set, low_value_res)
    title_texts = {c.text for c in title}

    subtitle = [
        c.model_copy(update={"incremental": c.text not in title_texts})
        for c in _field_combos(
            subtitle_tokens, TextField.SUBTITLE, min_length, max_length, brand_set, low_value_res
        )
    ]

    unique = list(title) + [c for c in subtitle if c.incremental]

    logger.debug(
        f"Extracted combos: {len(title)} title, {len(subtitle)} subtitle, {len(unique)} unique"
    )
    return ComboSet(title=title, subtitle=subtitle, unique=unique)
