"""
Keyword Ranking

Lexical analysis and cover-density ranking for keyword search. Documents and
queries are tokenised into lowercase words, English stop words are dropped
(their positions still count) and the remaining words are reduced with the
Snowball English stemmer. A document matches a query only when it contains
every query term; matching documents are ranked by cover density, where each
minimal span holding all query terms contributes 0.1 divided by one plus the
number of extra words inside the span.

Tokenisation and the stop word list deliberately follow PostgreSQL's
``english`` text search configuration instead of nltk's ``word_tokenize`` and
``stopwords`` corpus. Every store backend then ranks exactly like
``to_tsvector('english', ...)`` with ``ts_rank_cd``, and no nltk corpus has to
be downloaded; only the Snowball stemmer comes from nltk.
"""

import re
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from nltk.stem.snowball import SnowballStemmer

# PostgreSQL / Snowball english stop word list
ENGLISH_STOP_WORDS: FrozenSet[str] = frozenset(
    """
    i me my myself we our ours ourselves you your yours yourself yourselves
    he him his himself she her hers herself it its itself they them their
    theirs themselves what which who whom this that these those am is are
    was were be been being have has had having do does did doing a an the
    and but if or because as until while of at by for with about against
    between into through during before after above below to from up down in
    out on off over under again further then once here there when where why
    how all any both each few more most other some such no nor not only own
    same so than too very s t can will just don should now
    """.split()
)

# Weight of an unlabelled position
DEFAULT_POSITION_WEIGHT = 0.1

_WORD = re.compile(r"\w+", re.UNICODE)

TermPositions = Dict[str, List[int]]


class LexicalAnalyzer:
    """Turns text into stemmed terms with word positions."""

    def __init__(self, language: str = "english", stop_words: Optional[Iterable[str]] = None):
        self.language = language
        self.stop_words = frozenset(stop_words) if stop_words is not None else ENGLISH_STOP_WORDS
        self._stemmer = SnowballStemmer(language)
        self._stem_cache: Dict[str, str] = {}

    def stem(self, word: str) -> str:
        stemmed = self._stem_cache.get(word)
        if stemmed is None:
            stemmed = self._stemmer.stem(word)
            self._stem_cache[word] = stemmed
        return stemmed

    def tokens(self, text: str) -> List[Tuple[int, str]]:
        """Return (position, stem) pairs for every non-stop word."""
        result = []
        for position, match in enumerate(_WORD.finditer(text.lower())):
            word = match.group(0)
            if word in self.stop_words:
                continue
            result.append((position, self.stem(word)))
        return result

    def analyze(self, text: str) -> TermPositions:
        """
        Build the positional term map of a document.

        Args:
            text: Document text

        Returns:
            Mapping of stem to sorted word positions
        """
        positions: TermPositions = {}
        for position, term in self.tokens(text or ""):
            positions.setdefault(term, []).append(position)
        return positions

    def parse_query(self, text: str) -> List[str]:
        """Unique query stems in order of first appearance."""
        seen: Dict[str, None] = {}
        for _, term in self.tokens(text or ""):
            seen.setdefault(term, None)
        return list(seen)


def matches(term_positions: TermPositions, query_terms: List[str]) -> bool:
    return bool(query_terms) and all(term in term_positions for term in query_terms)


def find_covers(term_positions: TermPositions, query_terms: List[str]) -> List[Tuple[int, int]]:
    """
    Find successive minimal spans containing every query term.

    Each cover ends at the earliest position where all terms have been seen
    after the previous cover's start, and begins at the latest position that
    still keeps all terms inside the span.
    """
    if not matches(term_positions, query_terms):
        return []

    occurrences = sorted(
        (position, term)
        for term in query_terms
        for position in term_positions[term]
    )
    needed = len(query_terms)
    covers: List[Tuple[int, int]] = []
    after = -1

    while True:
        seen = set()
        end_index = None
        for index, (position, term) in enumerate(occurrences):
            if position <= after:
                continue
            seen.add(term)
            if len(seen) == needed:
                end_index = index
                break

        if end_index is None:
            break

        seen = set()
        begin = None
        for position, term in reversed(occurrences[:end_index + 1]):
            if position <= after:
                break
            seen.add(term)
            if len(seen) == needed:
                begin = position
                break

        covers.append((begin, occurrences[end_index][0]))
        after = begin

    return covers


def cover_density_rank(term_positions: TermPositions, query_terms: List[str]) -> float:
    """
    Rank a document for a query by cover density.

    Args:
        term_positions: Positional term map from LexicalAnalyzer.analyze
        query_terms: Unique query stems

    Returns:
        Raw rank; 0.0 when the document does not contain every term
    """
    needed = len(query_terms)
    rank = 0.0
    for begin, end in find_covers(term_positions, query_terms):
        noise = (end - begin) - (needed - 1)
        rank += DEFAULT_POSITION_WEIGHT / (1 + max(noise, 0))
    return rank
