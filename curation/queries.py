"""Query construction for each external catalog.

This is the only module that knows a source's query syntax. Builders are
pure: the same name and affiliations always give the same strings.
"""
from typing import Iterable, List, Optional, Tuple

POST_NOMINALS = ["MD", "PhD"]
_TITLE_TOKENS = {"dr", "doctor", "md", "phd"}


def _clean(text: Optional[str]) -> str:
    return " ".join((text or "").split())


def _dedupe(items: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for it in items:
        if it and it not in seen:
            seen.add(it)
            out.append(it)
    return out


def compact_name(name: str) -> Optional[Tuple[str, str]]:
    """("Smith", "J") for "John Smith"; None for single-token names."""
    tokens = _clean(name).split()
    if len(tokens) < 2:
        return None
    return tokens[-1], tokens[0][0].upper()


class QueryBuilder:
    max_suggestions = 5

    def author_term(self, name: str) -> str:
        return name

    def affiliation_term(self, affiliation: str) -> str:
        return affiliation

    def phrase(self, text: str) -> str:
        return f'"{text}"'

    def combine(self, left: str, right: str) -> str:
        return f"{left} AND {right}"

    def compact_term(self, last: str, initial: str) -> str:
        return f"{last}, {initial}"

    def build_primary_query(self, name: str, affiliation: Optional[str] = None) -> str:
        name = _clean(name)
        affiliation = _clean(affiliation)
        q = self.author_term(name)
        if affiliation:
            q = self.combine(q, self.affiliation_term(affiliation))
        return q

    def extra_suggestions(self, name: str) -> List[str]:
        return []

    def suggest_alternate_queries(self, name: str, affiliations: Iterable[str] = ()) -> List[str]:
        name = _clean(name)
        if not name:
            return []
        suggestions = [name, self.phrase(name)]
        for aff in affiliations or []:
            aff = _clean(aff)
            if aff:
                suggestions.append(self.combine(self.author_term(name), self.affiliation_term(aff)))
        compact = compact_name(name)
        if compact:
            suggestions.append(self.compact_term(*compact))
        suggestions.extend(self.extra_suggestions(name))
        return _dedupe(suggestions)[: self.max_suggestions]


class PubMedQueryBuilder(QueryBuilder):
    """Entrez field-qualified terms: ``Jane Doe[Author] AND Mayo Clinic[Affiliation]``."""

    def author_term(self, name: str) -> str:
        return f"{name}[Author]"

    def affiliation_term(self, affiliation: str) -> str:
        return f"{affiliation}[Affiliation]"

    def compact_term(self, last: str, initial: str) -> str:
        return f"{last} {initial}[Author]"


class TrialQueryBuilder(QueryBuilder):
    """ClinicalTrials.gov Essie expressions; affiliation searched in site facilities."""

    def affiliation_term(self, affiliation: str) -> str:
        return f"AREA[LocationFacility]{self.phrase(affiliation)}"


class NewsQueryBuilder(QueryBuilder):
    max_suggestions = 6

    def author_term(self, name: str) -> str:
        return self.phrase(name)

    def affiliation_term(self, affiliation: str) -> str:
        return self.phrase(affiliation)

    def combine(self, left: str, right: str) -> str:
        return f"{left} {right}"

    def extra_suggestions(self, name: str) -> List[str]:
        tokens = {t.strip(".,").lower() for t in name.split()}
        if tokens & _TITLE_TOKENS:
            return []
        return [self.phrase(f"Dr. {name}")] + [self.phrase(f"{name}, {t}") for t in POST_NOMINALS]
