"""
Query expansion for table search.

Census table titles are singular and domain specific ("SEX BY AGE",
"HOUSEHOLD INCOME IN THE PAST 12 MONTHS"), while the search endpoints match
by substring. Everyday plurals and academic umbrella terms ("economics") find
little, so each query is rewritten into a handful of probe terms.
"""
from __future__ import annotations

import logging
from typing import Dict, List

logger = logging.getLogger(__name__)


# Umbrella topics -> concrete terms that appear in table titles.
# The umbrella itself is not searched.
BROAD_TOPICS: Dict[str, List[str]] = {
    "economics": ["income", "employment", "industry", "occupation", "business", "economic"],
    "economy": ["income", "employment", "industry", "occupation", "business", "economic"],
    "demographics": ["population", "age", "sex", "race", "household"],
    "housing market": ["housing", "rent", "mortgage", "home value", "vacancy"],
    "social": ["education", "language", "disability", "veteran", "ancestry"],
    "health": ["health insurance", "disability"],
    "poverty and inequality": ["poverty", "income", "gini", "public assistance"],
}

# Exact-match plural <-> singular variants the suffix rule gets wrong
WORD_VARIANTS: Dict[str, str] = {
    "people": "person",
    "persons": "person",
    "children": "child",
    "women": "woman",
    "men": "man",
    "families": "family",
    "households": "household",
    "businesses": "business",
    "industries": "industry",
    "occupations": "occupation",
    "incomes": "income",
    "properties": "property",
    "vacancies": "vacancy",
    "veterans": "veteran",
    "ancestries": "ancestry",
    "languages": "language",
    "disabilities": "disability",
    "commutes": "commuting",
    "rents": "rent",
}
WORD_VARIANTS.update({
    singular: plural
    for plural, singular in list(WORD_VARIANTS.items())
    if singular != plural and singular not in WORD_VARIANTS
})


class QueryExpander:
    """Rewrites a free-text query into probe terms for the search endpoints."""

    def __init__(self, broad_topics: Dict[str, List[str]] = None, variants: Dict[str, str] = None):
        self.broad_topics = broad_topics if broad_topics is not None else BROAD_TOPICS
        self.variants = variants if variants is not None else WORD_VARIANTS

    @staticmethod
    def _key(query: str) -> str:
        return query.strip().lower()

    def is_broad_topic(self, query: str) -> bool:
        return self._key(query) in self.broad_topics

    def expand(self, query: str) -> List[str]:
        """Probe terms for a query, never empty.

        Outside the broad-topic branch the original query is always first.
        """
        key = self._key(query)

        if key in self.broad_topics:
            terms = list(self.broad_topics[key])
            logger.info(f"Expanded broad topic '{query}' to {terms}")
            return _dedupe(terms)

        original = query.strip()
        terms = [original]

        variant = self.variants.get(key)
        if variant:
            terms.append(variant)

        if key.endswith("s") and len(key) > 3:
            terms.append(original[:-1])

        return _dedupe(terms)


def _dedupe(terms: List[str]) -> List[str]:
    seen = set()
    unique = []
    for term in terms:
        marker = term.lower()
        if marker not in seen:
            seen.add(marker)
            unique.append(term)
    return unique
