"""
Query classification and routing.

Scores a query against five query types with weighted keyword and regex
matching (Norwegian vocabulary, the shop's customer language), picks the
winning type and maps it to a processing strategy:

    simple                         -> search-only
    compatibility / comparison /
    recommendation                 -> unified-reasoning
    complex                        -> reasoning-only, or unified-reasoning
                                      when the query also asks about price
                                      or purchase ("pris", "kjøp")

Also extracts product identifiers (cartridge and printer model codes) and
synonym hints that the search prompt uses to broaden the lookup.
"""
import re
from typing import Dict, List, Optional, Pattern, Tuple

from tonerweb.core.config import ClassifierSettings
from tonerweb.core.logging import get_logger
from tonerweb.services.routing.schema import QueryClassification, QueryType, Strategy

logger = get_logger(__name__)

_I = re.IGNORECASE

TYPE_PATTERNS: Dict[QueryType, Tuple[List[str], List[Pattern]]] = {
    QueryType.SIMPLE: (
        [
            "finn", "søk", "pris", "kjøp", "bestill", "har dere", "finnes",
            "hvor mye koster", "hva koster", "på lager", "leveringstid",
        ],
        [
            re.compile(r"^(finn|søk|kjøp)\s+\w+", _I),
            re.compile(r"\b(pris|koster)\s+(på|for)\b", _I),
            re.compile(r"\bpå\s+lager\b", _I),
            re.compile(r"\b(Canon|HP|Epson|Brother)\s+[A-Z0-9-]+\b", _I),
        ],
    ),
    QueryType.COMPLEX: (
        [
            "hvilken", "hva er forskjellen", "anbefaler", "best", "bør jeg",
            "fordeler", "ulemper", "hvorfor", "forklar", "hjelp meg",
            "trenger råd", "usikker", "alternativer", "budsjett",
        ],
        [
            re.compile(r"\b(hvilken|hvilket|hvilke)\s+.+\s+(best|anbefaler|bør)\b", _I),
            re.compile(r"\bforskjell(en)?\s+(mellom|på)\b", _I),
            re.compile(r"\b(fordeler|ulemper)\s+(med|ved)\b", _I),
            re.compile(r"\bhjelp\s+meg\s+(velge|finne)\b", _I),
            re.compile(r"\btrenger\s+(råd|hjelp|veiledning)\b", _I),
        ],
    ),
    QueryType.COMPATIBILITY: (
        [
            "kompatibel", "passer", "fungerer", "virker", "til min",
            "for min", "skriver", "printer", "modell",
        ],
        [
            re.compile(r"\b(kompatibel|passer)\s+(med|til|for)\b", _I),
            re.compile(r"\b(fungerer|virker)\s+.+\s+(med|på|i)\b", _I),
            re.compile(r"\btil\s+min\s+\w+", _I),
            re.compile(r"\bfor\s+\w+\s+(skriver|printer)\b", _I),
            re.compile(r"\b(Canon|HP|Epson|Brother)\s+\w+\s+\d+", _I),
        ],
    ),
    QueryType.COMPARISON: (
        [
            "sammenlign", "versus", "eller", "bedre enn", "forskjell mellom",
            "vs", "kontra", "mot",
        ],
        [
            re.compile(r"\b(sammenlign|compare)\b", _I),
            re.compile(r"\b\w+\s+(vs|versus|eller|kontra)\s+\w+\b", _I),
            re.compile(r"\b(bedre|verre)\s+enn\b", _I),
            re.compile(r"\bforskjell\s+mellom\s+.+\s+og\b", _I),
        ],
    ),
    QueryType.RECOMMENDATION: (
        [
            "anbefal", "foreslå", "tips", "råd", "hva bør", "hva skal",
            "trenger", "ønsker", "vil ha",
        ],
        [
            re.compile(r"\b(anbefal|foreslå)\s+.+\s+for\b", _I),
            re.compile(r"\bhva\s+(bør|skal)\s+jeg\b", _I),
            re.compile(r"\btrenger\s+.+\s+som\b", _I),
            re.compile(r"\b(tips|råd)\s+(om|for|til)\b", _I),
        ],
    ),
}

# Uppercase run followed by digits, optionally hyphenated: "PG-540", "TN2420"
MODEL_TOKEN = re.compile(r"\b[A-Z]{2,}-?\d{2,}", _I)

PURCHASE_MARKERS = ("pris", "kjøp")
IMAGE_MARKERS = ("bilde",)

STRATEGY_REASONS: Dict[QueryType, str] = {
    QueryType.SIMPLE: "Direct product search query, using the search model for real-time results",
    QueryType.COMPATIBILITY: "Compatibility question, using the unified model for search and reasoning in one call",
    QueryType.COMPARISON: "Comparison query requiring search and analysis, using the unified model",
    QueryType.RECOMMENDATION: "Recommendation query requiring search and analysis, using the unified model",
}
COMPLEX_PURCHASE_REASON = "Complex query with pricing needs, using the unified model for search and analysis"
COMPLEX_REASON = "Pure reasoning query, using the reasoning model for detailed analysis"
EMPTY_REASON = "Empty query, defaulting to direct search"

IDENTIFIER_PATTERNS: List[Pattern] = [
    re.compile(r"\b(?:PG|CL|HP|CN|CB|CC|CD|CE|CF)-?\d+\w*", _I),
    re.compile(r"\b\d{3,4}[A-Z]{1,2}\b"),
    re.compile(r"\b(?:Canon|HP|Epson|Brother)\s+\w+-?\d+", _I),
    re.compile(r"\b(?:PIXMA|LaserJet|OfficeJet|DeskJet)\s+\w+", _I),
]

PRODUCT_TYPE_ALTERNATIVES: Dict[str, List[str]] = {
    "blekk": ["blekkpatron", "ink cartridge"],
    "toner": ["tonerpatron", "toner cartridge"],
}

BRAND_ALTERNATIVES: Dict[str, List[str]] = {
    "canon": ["Canon PIXMA", "Canon imageCLASS"],
    "hp": ["HP LaserJet", "HP OfficeJet", "HP DeskJet"],
    "epson": ["Epson WorkForce", "Epson Expression"],
    "brother": ["Brother MFC", "Brother HL", "Brother DCP"],
}


class QueryClassifier:
    """
    Rule-based query classifier.

    Stateless apart from its settings, so one instance is shared by all
    requests. ``classify`` is deterministic and never raises.
    """

    def __init__(self, settings: Optional[ClassifierSettings] = None):
        self.settings = settings or ClassifierSettings()

    def score(self, query: str) -> Dict[QueryType, int]:
        """Raw score per query type, before picking a winner."""
        keyword_score = self.settings.keyword_score
        pattern_score = self.settings.pattern_score
        lower_query = query.lower()

        scores: Dict[QueryType, int] = {query_type: 0 for query_type in QueryType}
        for query_type, (keywords, patterns) in TYPE_PATTERNS.items():
            for keyword in keywords:
                if keyword in lower_query:
                    scores[query_type] += keyword_score
            for pattern in patterns:
                if pattern.search(query):
                    scores[query_type] += pattern_score

        word_count = len(query.split())
        if word_count < self.settings.simple_query_max_words:
            # Short queries are usually direct product lookups
            scores[QueryType.SIMPLE] += keyword_score + 1
        elif word_count > self.settings.complex_query_min_words:
            scores[QueryType.COMPLEX] += keyword_score

        if MODEL_TOKEN.search(query):
            scores[QueryType.SIMPLE] += keyword_score

        return scores

    def classify(self, query: str, has_image: bool = False) -> QueryClassification:
        """
        Classify a query and choose its processing strategy.

        Args:
            query: Raw user message
            has_image: Whether an image was attached to the request

        Returns:
            QueryClassification with confidence in [0, 1]
        """
        text = query.strip()
        lower_text = text.lower()
        requires_image = has_image or any(marker in lower_text for marker in IMAGE_MARKERS)

        if not text:
            return QueryClassification(
                type=QueryType.SIMPLE,
                strategy=Strategy.SEARCH_ONLY,
                confidence=0.0,
                reasoning=EMPTY_REASON,
                requires_image=requires_image,
            )

        scores = self.score(text)

        # Strict comparison: on ties the earlier type in declaration order wins
        best_type = QueryType.SIMPLE
        best_score = scores[best_type]
        for query_type in QueryType:
            if scores[query_type] > best_score:
                best_type = query_type
                best_score = scores[query_type]

        strategy, reasoning = self._strategy_for(best_type, lower_text)
        confidence = max(0.0, min(best_score / self.settings.max_score, 1.0))

        logger.debug(
            "query_classified",
            query_type=best_type.value,
            strategy=strategy.value,
            confidence=confidence,
            scores={query_type.value: value for query_type, value in scores.items()},
        )

        return QueryClassification(
            type=best_type,
            strategy=strategy,
            confidence=confidence,
            reasoning=reasoning,
            requires_image=requires_image,
            scores={query_type.value: value for query_type, value in scores.items()},
        )

    def _strategy_for(self, query_type: QueryType, lower_query: str) -> Tuple[Strategy, str]:
        if query_type == QueryType.SIMPLE:
            return Strategy.SEARCH_ONLY, STRATEGY_REASONS[query_type]
        if query_type == QueryType.COMPLEX:
            if any(marker in lower_query for marker in PURCHASE_MARKERS):
                return Strategy.UNIFIED_REASONING, COMPLEX_PURCHASE_REASON
            return Strategy.REASONING_ONLY, COMPLEX_REASON
        return Strategy.UNIFIED_REASONING, STRATEGY_REASONS[query_type]


def extract_product_identifiers(query: str) -> List[str]:
    """
    Pull cartridge and printer model codes out of a query.

    Returns matches in pattern order, then position order, without duplicates.

    >>> extract_product_identifiers("Blekk til Canon PIXMA MG3650S, PG-540")
    ['PG-540', 'PIXMA MG3650S']
    """
    identifiers: List[str] = []
    for pattern in IDENTIFIER_PATTERNS:
        for match in pattern.finditer(query):
            token = match.group(0)
            if token not in identifiers:
                identifiers.append(token)
    return identifiers


def suggest_alternative_terms(query: str) -> List[str]:
    """Product-type and brand synonyms that broaden a product search."""
    lower_query = query.lower()
    alternatives: List[str] = []

    for term, synonyms in PRODUCT_TYPE_ALTERNATIVES.items():
        if term in lower_query:
            alternatives.extend(synonyms)

    for brand, models in BRAND_ALTERNATIVES.items():
        if brand in lower_query:
            alternatives.extend(models)

    return alternatives
