"""
Search Engine — Relevance scoring and ranking of cached vault resources.

Every candidate is scored against the query with a strict precedence
ladder, each tier short-circuiting the next:

1. case-insensitive exact equality   → 100
2. case-insensitive prefix           → 75..90
3. case-insensitive substring        → 50..65
4. fuzzy subsequence (>= 70% of the query characters found in order)
                                     → 1..40

Tiers occupy disjoint score ranges, so a better tier always outranks a
worse one. A miss scores 0. Hits are ranked by descending score, then
shorter name, then name.

Values (ephemeral index only) use tiers 1-3; a subsequence over a long
secret value matches almost any query.
"""
import logging
from enum import Enum
from typing import Any, NamedTuple, Optional
from collections.abc import Iterable
from dataclasses import dataclass

from .models import Resource, ResourceType, VaultRecord
from .expiration import classify, days_until

logger = logging.getLogger("keyvault_index.search")

EXACT_SCORE = 100.0
PREFIX_BASE = 75.0
SUBSTRING_BASE = 50.0
TIER_SPREAD = 15.0
FUZZY_CEILING = 40.0
FUZZY_FLOOR = 1.0
FUZZY_THRESHOLD = 0.7
VALUE_WEIGHT = 0.9


class MatchTier(str, Enum):
    EXACT = "exact"
    PREFIX = "prefix"
    SUBSTRING = "substring"
    FUZZY = "fuzzy"
    NONE = "none"


class Match(NamedTuple):
    score: float
    tier: MatchTier

    @property
    def matched(self) -> bool:
        return self.score > 0


NO_MATCH = Match(0.0, MatchTier.NONE)


def normalize_query(query: Optional[str]) -> str:
    """Strip and lowercase a query; blank queries become ``""``."""
    return query.strip().lower() if query else ""


@dataclass
class SearchHit:
    """A single search result; derived on demand and never persisted."""
    vault_identifier: str
    resource_type: ResourceType
    name: str
    score: float
    tier: MatchTier = MatchTier.NONE
    matched_field: str = "name"
    source: Optional[Resource] = None

    def sort_key(self) -> tuple:
        return (-self.score, len(self.name), self.name)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output, without any value."""
        result: dict[str, Any] = {
            "vault": self.vault_identifier,
            "type": self.resource_type.value,
            "name": self.name,
            "score": round(self.score, 2),
            "match": self.tier.value,
            "field": self.matched_field,
        }
        if self.source is not None:
            result["resource"] = self.source.model_dump(
                mode="json", exclude={"value"},
            )
            status = classify(self.source.expires_on)
            result["status"] = status.value
            result["alert"] = status.alerting
            result["days_left"] = days_until(self.source.expires_on)
        return result


class SearchEngine:
    """Scores candidates against a query and ranks the resulting hits."""

    def __init__(self, fuzzy_threshold: float = FUZZY_THRESHOLD):
        if not 0 < fuzzy_threshold <= 1:
            raise ValueError(
                f"fuzzy_threshold must be in (0, 1], got {fuzzy_threshold}"
            )
        self.fuzzy_threshold = fuzzy_threshold

    def match(self, query: str, candidate: str, fuzzy: bool = True) -> Match:
        """Score ``candidate`` against ``query``, both compared lowercased."""
        q = normalize_query(query)
        c = candidate.lower() if candidate else ""
        if not q or not c:
            return NO_MATCH
        if q == c:
            return Match(EXACT_SCORE, MatchTier.EXACT)
        ratio = len(q) / len(c)
        if c.startswith(q):
            return Match(PREFIX_BASE + TIER_SPREAD * ratio, MatchTier.PREFIX)
        if q in c:
            return Match(SUBSTRING_BASE + TIER_SPREAD * ratio, MatchTier.SUBSTRING)
        if fuzzy:
            return self._fuzzy(q, c)
        return NO_MATCH

    def score(self, query: str, candidate: str) -> float:
        return self.match(query, candidate).score

    def _fuzzy(self, q: str, c: str) -> Match:
        """Greedy in-order subsequence match of ``q`` inside ``c``."""
        position = 0
        matched = 0
        first = last = -1
        for char in q:
            found = c.find(char, position)
            if found < 0:
                continue
            if first < 0:
                first = found
            last = found
            matched += 1
            position = found + 1
        if not matched:
            return NO_MATCH
        ratio = matched / len(q)
        if ratio < self.fuzzy_threshold:
            return NO_MATCH
        density = matched / (last - first + 1)
        return Match(max(FUZZY_FLOOR, FUZZY_CEILING * ratio * density), MatchTier.FUZZY)

    def search_record(
        self,
        record: VaultRecord,
        query: str,
        include_values: bool = False,
        resource_type: Optional[ResourceType] = None,
    ) -> list[SearchHit]:
        """Return the unordered hits of ``query`` inside one vault record."""
        hits: list[SearchHit] = []
        for rtype, resource in record.resources():
            if resource_type is not None and rtype != resource_type:
                continue
            hit = self._hit(record.vault_identifier, rtype, resource, query, include_values)
            if hit is not None:
                hits.append(hit)
        return hits

    def _hit(
        self,
        vault_identifier: str,
        rtype: ResourceType,
        resource: Resource,
        query: str,
        include_values: bool,
    ) -> Optional[SearchHit]:
        best = self.match(query, resource.name)
        field = "name"
        value = getattr(resource, "value", None)
        if include_values and value and best.tier != MatchTier.EXACT:
            found = self.match(query, value, fuzzy=False)
            weighted = found.score * VALUE_WEIGHT
            if weighted > best.score:
                best = Match(weighted, found.tier)
                field = "value"
        if not best.matched:
            return None
        return SearchHit(
            vault_identifier=vault_identifier,
            resource_type=rtype,
            name=resource.name,
            score=best.score,
            tier=best.tier,
            matched_field=field,
            source=resource.model_copy(deep=True),
        )

    @staticmethod
    def rank(hits: Iterable[SearchHit], limit: Optional[int] = None) -> list[SearchHit]:
        """Sort hits by descending score, shorter name, then name."""
        ranked = sorted(hits, key=SearchHit.sort_key)
        return ranked[:limit] if limit is not None else ranked


def record_fingerprint(record: VaultRecord) -> tuple:
    """Identity of a record's content, used for staleness checks.

    Covers the indexing time plus the type, name, version, enabled flag
    and expiry of every resource, so an in-place change with the same
    timestamp and counts is still detected.
    """
    contents = sorted(
        (rtype.value, resource.name, resource.version or "",
         resource.enabled, str(resource.expires_on))
        for rtype, resource in record.resources()
    )
    return (record.last_indexed, len(contents), hash(tuple(contents)))


class VaultSearchIndex:
    """Search index of one vault, rebuilt whenever its record changes.

    The index keeps its own copy of the record, so later changes to the
    caller's record never leak into it.
    """

    def __init__(
        self,
        record: VaultRecord,
        engine: Optional[SearchEngine] = None,
        include_values: bool = True,
    ):
        self.engine = engine or SearchEngine()
        self.include_values = include_values
        self.vault_identifier = record.vault_identifier
        self.fingerprint = record_fingerprint(record)
        self._record = record.model_copy(deep=True)

    def __len__(self) -> int:
        return self._record.resource_count

    def is_stale(self, record: VaultRecord) -> bool:
        return record_fingerprint(record) != self.fingerprint

    def search(
        self,
        query: str,
        resource_type: Optional[ResourceType] = None,
    ) -> list[SearchHit]:
        return self.engine.search_record(
            self._record,
            query,
            include_values=self.include_values,
            resource_type=resource_type,
        )
