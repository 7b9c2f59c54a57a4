"""
Tokenizer — splits listing text into normalized, tier-tagged tokens.

Lowercases (after NFKC normalization), keeps word runs with internal hyphens
or apostrophes, drops the apostrophes ("don't" -> "dont") and treats every
other punctuation mark (| – & : , .) as a separator.
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from .models import TextField, Token

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[^\W_]+(?:['’\-][^\W_]+)*")
_APOSTROPHES_RE = re.compile(r"['’]")

MIN_TOKEN_LENGTH = 2
NOISE_TOKEN_LENGTH = 2


def normalize_text(text: Optional[str]) -> str:
    """NFKC-normalize and lowercase; None becomes ''."""
    if not text:
        return ""
    return unicodedata.normalize("NFKC", text).lower()


def tokenize(
    text: Optional[str],
    field: TextField = TextField.TITLE,
    stopwords: Iterable[str] = (),
    relevance=None,
) -> List[Token]:
    """
    Split text into Tokens.

    Args:
        text: Raw field text (None or '' yields an empty list)
        field: Source field recorded on every token
        stopwords: Stopword set from the merged RuleSet
        relevance: TokenRelevanceClassifier; without one every token is tier 1

    Returns:
        Ordered list of Token; tokens shorter than 2 characters are kept but tier 0
    """
    normalized = normalize_text(text)
    if not normalized.strip():
        return []

    stopword_set = stopwords if isinstance(stopwords, (set, frozenset)) else set(stopwords)
    tokens: List[Token] = []

    for match in _TOKEN_RE.finditer(normalized):
        word = _APOSTROPHES_RE.sub("", match.group(0))
        if not word:
            continue

        if len(word) < MIN_TOKEN_LENGTH:
            tier = 0
        elif relevance is not None:
            tier = relevance.tier(word)
        else:
            tier = 1

        tokens.append(Token(
            text=word,
            field=field,
            position=len(tokens),
            start=match.start(),
            end=match.end(),
            tier=tier,
            is_stopword=word in stopword_set,
        ))

    logger.debug(f"Tokenized {field.value}: {len(tokens)} tokens")
    return tokens


def normalize_term(text: Optional[str]) -> str:
    """
    Normalize a rule term (pattern, tier key, stopword) the way listing text is
    tokenized, so "Don't" becomes "dont" and "#1" becomes "1". Returns '' when
    the term has no word characters.
    """
    return " ".join(t.text for t in tokenize(text))


@dataclass
class TextAnalysis:
    """Keyword / noise split of a token sequence."""
    keywords: List[str] = field(default_factory=list)
    ignored: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.keywords) + len(self.ignored)

    @property
    def noise_ratio(self) -> float:
        if self.total == 0:
            return 0.0
        return len(self.ignored) / self.total


def analyze_text(tokens: List[Token]) -> TextAnalysis:
    """Stopwords and tokens of length <= 2 count as noise; the rest are keywords."""
    analysis = TextAnalysis()
    for token in tokens:
        if token.is_stopword or len(token.text) <= NOISE_TOKEN_LENGTH:
            analysis.ignored.append(token.text)
        else:
            analysis.keywords.append(token.text)
    return analysis


def content_tokens(tokens: List[Token]) -> List[Token]:
    """Tokens that are neither stopwords nor tier 0."""
    return [t for t in tokens if not t.is_stopword and t.tier > 0]


def distinct_texts(tokens: Iterable[Token]) -> List[str]:
    """Token texts in first-seen order without repeats."""
    seen: Set[str] = set()
    ordered = []
    for token in tokens:
        if token.text not in seen:
            seen.add(token.text)
            ordered.append(token.text)
    return ordered
