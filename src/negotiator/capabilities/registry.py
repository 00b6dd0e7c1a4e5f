"""
Capability Registry: Providers, Similarity and Compatibility Graph

Stores capability descriptions and the agents that provide them, keeps a
similarity map rebuilt after every registration, and maintains a typed
compatibility graph with reciprocal edges.

Similarity:
    score = name * 0.4 + provider_overlap * 0.3 + description_overlap * 0.3
          + taxonomy_overlap * 0.1 (bonus, clamped to 1.0)

Provider selection:
    score = coverage * 0.5 + required_coverage * 0.3
          + taxonomy_relevance * 0.1 + preferred * 0.1
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any

from negotiator.capabilities.models import (
    Capability,
    CapabilityTaxonomy,
    CompatibilityEdge,
    CompatibilityType,
)
from negotiator.capabilities.similarity import set_overlap, string_similarity, word_overlap
from negotiator.core.clock import Clock, SystemClock
from negotiator.core.events import CapabilityEvent, CapabilityEventKind, EventBus
from negotiator.core.store import KeyValueStore, MemoryStore
from negotiator.errors import coerce_enum

logger = logging.getLogger(__name__)

# Similarity weights
NAME_WEIGHT = 0.4
PROVIDER_WEIGHT = 0.3
DESCRIPTION_WEIGHT = 0.3
TAXONOMY_BONUS = 0.1
SIMILARITY_THRESHOLD = 0.2

# Provider scoring weights
COVERAGE_WEIGHT = 0.5
REQUIRED_WEIGHT = 0.3
TAXONOMY_WEIGHT = 0.1
PREFERRED_WEIGHT = 0.1

# Composition scoring
COMPLEMENTARITY_WEIGHT = 0.6
TAXONOMIC_COVERAGE_WEIGHT = 0.3
MISSING_PREREQUISITE_PENALTY = 0.1
MAX_SUGGESTIONS = 3

SYMMETRIC_TYPES = (CompatibilityType.COMPLEMENTARY, CompatibilityType.ENHANCES)


@dataclass
class ProviderMatch:
    provider_id: str
    capabilities: list[str]
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "capabilities": list(self.capabilities),
            "score": round(self.score, 4),
        }


@dataclass
class ProviderSearchResult:
    """Outcome of a greedy provider selection."""

    success: bool
    coverage_score: float
    providers: list[ProviderMatch] = field(default_factory=list)
    fulfilled: list[str] = field(default_factory=list)
    unfulfilled: list[str] = field(default_factory=list)

    @property
    def provider_ids(self) -> list[str]:
        return [p.provider_id for p in self.providers]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "coverage_score": self.coverage_score,
            "providers": [p.to_dict() for p in self.providers],
            "fulfilled": list(self.fulfilled),
            "unfulfilled": list(self.unfulfilled),
        }


@dataclass
class CombinationScore:
    composition_score: float = 0.0
    complementarity_score: float = 0.0
    taxonomic_coverage_score: float = 0.0
    missing_critical: list[str] = field(default_factory=list)
    suggested_additions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "composition_score": self.composition_score,
            "complementarity_score": self.complementarity_score,
            "taxonomic_coverage_score": self.taxonomic_coverage_score,
            "missing_critical": list(self.missing_critical),
            "suggested_additions": list(self.suggested_additions),
        }


@dataclass
class SimilarCapability:
    name: str
    score: float


class CapabilityRegistry:
    """
    Registry of capabilities, their providers and their relationships.

    Registration is rare relative to lookups, so the similarity map is rebuilt
    wholesale (O(n²)) on every registration instead of being patched.
    """

    def __init__(
        self,
        events: EventBus | None = None,
        clock: Clock | None = None,
        capabilities: KeyValueStore[str, Capability] | None = None,
    ) -> None:
        self.events = events or EventBus()
        self.clock = clock or SystemClock()
        self._capabilities: KeyValueStore[str, Capability] = capabilities or MemoryStore()
        self._providers: dict[str, set[str]] = {}
        self._compatibility: dict[str, list[CompatibilityEdge]] = {}
        self._similarity: dict[str, list[SimilarCapability]] = {}

    # ── Registration ─────────────────────────────────────────────────────

    def register(self, capability: Capability, provider_id: str) -> Capability:
        """Register (or merge) a capability and add a provider for it."""
        name = capability.name
        existing = self._capabilities.get(name)
        if existing is None:
            merged = replace(
                capability,
                taxonomy=list(dict.fromkeys(capability.taxonomy)),
                compatibilities=list(capability.compatibilities),
                contextual_relevance=dict(capability.contextual_relevance),
            )
        else:
            merged = replace(
                existing,
                description=capability.description or existing.description,
                level=capability.level,
                taxonomy=list(dict.fromkeys([*existing.taxonomy, *capability.taxonomy])),
                compatibilities=[*existing.compatibilities, *capability.compatibilities],
                contextual_relevance={
                    **existing.contextual_relevance,
                    **capability.contextual_relevance,
                },
            )
        self._capabilities.put(name, merged)
        self._providers.setdefault(name, set()).add(provider_id)

        for edge in capability.compatibilities:
            self._register_edge(name, edge)

        self._rebuild_similarity()
        logger.info("Registered capability %s for provider %s", name, provider_id)
        self.events.publish(
            CapabilityEvent(
                kind=CapabilityEventKind.REGISTERED,
                timestamp=self.clock.now(),
                capability=name,
                provider_id=provider_id,
            )
        )
        return merged

    def _register_edge(self, source: str, edge: CompatibilityEdge) -> None:
        edges = self._compatibility.setdefault(source, [])
        current = _find_edge(edges, edge.target, edge.type)
        if current is None:
            edges.append(replace(edge))
        else:
            current.strength = max(current.strength, edge.strength)
            if edge.description:
                current.description = edge.description

        back = self._compatibility.setdefault(edge.target, [])
        if edge.type in SYMMETRIC_TYPES:
            reciprocal = _find_edge(back, source, edge.type)
            if reciprocal is None:
                back.append(
                    CompatibilityEdge(
                        target=source,
                        type=edge.type,
                        strength=edge.strength,
                        description=f"Reciprocal {edge.type.value} relationship with {source}",
                    )
                )
            else:
                reciprocal.strength = max(reciprocal.strength, edge.strength)
        elif edge.type == CompatibilityType.PREREQUISITE:
            # Inverse edge is only installed once; dependency direction is not mirrored
            if _find_edge(back, source, CompatibilityType.PREREQUISITE) is None:
                back.append(
                    CompatibilityEdge(
                        target=source,
                        type=CompatibilityType.PREREQUISITE,
                        strength=edge.strength,
                        description=f"{source} is required for {edge.target}",
                    )
                )

    # ── Lookups ──────────────────────────────────────────────────────────

    def has_capability(self, name: str) -> bool:
        return name in self._providers

    def get_capability(self, name: str) -> Capability | None:
        return self._capabilities.get(name)

    def list_capabilities(self) -> list[Capability]:
        return self._capabilities.values()

    def get_providers(self, name: str) -> list[str]:
        return sorted(self._providers.get(name, ()))

    def get_provider_capabilities(self, provider_id: str) -> list[str]:
        return [name for name, providers in self._providers.items() if provider_id in providers]

    def get_similar(self, name: str) -> list[SimilarCapability]:
        return list(self._similarity.get(name, []))

    def get_edges(self, name: str) -> list[CompatibilityEdge]:
        return list(self._compatibility.get(name, []))

    def get_compatible(self, name: str) -> list[dict[str, Any]]:
        return [
            {"name": e.target, "compatibility_type": e.type.value, "score": e.strength}
            for e in self._compatibility.get(name, [])
        ]

    def get_complementary(self, names: list[str]) -> list[str]:
        """Complementary capabilities of ``names`` that are not already in it."""
        present = set(names)
        found: dict[str, None] = {}
        for name in names:
            for edge in self._compatibility.get(name, []):
                if edge.type == CompatibilityType.COMPLEMENTARY and edge.target not in present:
                    found[edge.target] = None
        return list(found)

    def get_by_taxonomy(self, taxonomy: CapabilityTaxonomy | str) -> list[str]:
        taxonomy = coerce_enum(CapabilityTaxonomy, taxonomy, "taxonomy")
        return [c.name for c in self._capabilities.values() if taxonomy in c.taxonomy]

    # ── Similarity ───────────────────────────────────────────────────────

    def similarity(self, a: str, b: str) -> float:
        """Weighted similarity of two registered capabilities."""
        name_score = string_similarity(a, b)
        provider_score = set_overlap(self._providers.get(a, ()), self._providers.get(b, ()))

        cap_a = self._capabilities.get(a)
        cap_b = self._capabilities.get(b)
        desc_a = cap_a.description if cap_a else ""
        desc_b = cap_b.description if cap_b else ""
        description_score = word_overlap(desc_a, desc_b)

        tax_a = cap_a.taxonomy if cap_a else []
        tax_b = cap_b.taxonomy if cap_b else []
        bonus = set_overlap(tax_a, tax_b) * TAXONOMY_BONUS

        score = (
            name_score * NAME_WEIGHT
            + provider_score * PROVIDER_WEIGHT
            + description_score * DESCRIPTION_WEIGHT
        )
        return min(1.0, score + bonus)

    def _rebuild_similarity(self) -> None:
        names = self._capabilities.keys()
        rebuilt: dict[str, list[SimilarCapability]] = {}
        for name in names:
            similar = []
            for other in names:
                if other == name:
                    continue
                score = self.similarity(name, other)
                if score > SIMILARITY_THRESHOLD:
                    similar.append(SimilarCapability(name=other, score=score))
            similar.sort(key=lambda s: s.score, reverse=True)
            rebuilt[name] = similar
        self._similarity = rebuilt

    # ── Composition ──────────────────────────────────────────────────────

    def score_capability_combination(self, names: list[str]) -> CombinationScore:
        """Score how well a set of capabilities works together."""
        if not names:
            return CombinationScore()

        total_strength = 0.0
        relationships = 0
        for i, cap_a in enumerate(names):
            for cap_b in names[i + 1 :]:
                if not self.has_capability(cap_a) or not self.has_capability(cap_b):
                    continue
                edge = _find_edge(
                    self._compatibility.get(cap_a, []), cap_b, CompatibilityType.COMPLEMENTARY
                )
                if edge is not None:
                    total_strength += edge.strength
                    relationships += 1
        complementarity = total_strength / relationships if relationships else 0.0

        relevant = [t for t in CapabilityTaxonomy if t != CapabilityTaxonomy.UNCATEGORIZED]
        covered: set[CapabilityTaxonomy] = set()
        for name in names:
            capability = self._capabilities.get(name)
            if capability:
                covered.update(capability.taxonomy)
        taxonomic_coverage = len(covered) / len(relevant)

        missing: list[str] = []
        for name in names:
            for edge in self._compatibility.get(name, []):
                if edge.type == CompatibilityType.PREREQUISITE and edge.target not in names:
                    missing.append(edge.target)

        def complement_strength(candidate: str) -> float:
            total = 0.0
            for name in names:
                edge = _find_edge(
                    self._compatibility.get(name, []), candidate, CompatibilityType.COMPLEMENTARY
                )
                if edge is not None:
                    total += edge.strength
            return total

        suggestions = sorted(
            self.get_complementary(names), key=complement_strength, reverse=True
        )[:MAX_SUGGESTIONS]

        penalty = (
            MISSING_PREREQUISITE_PENALTY * min(1.0, len(missing) / len(names)) if missing else 0.0
        )
        composition = max(
            0.0,
            COMPLEMENTARITY_WEIGHT * complementarity
            + TAXONOMIC_COVERAGE_WEIGHT * taxonomic_coverage
            - penalty,
        )
        return CombinationScore(
            composition_score=composition,
            complementarity_score=complementarity,
            taxonomic_coverage_score=taxonomic_coverage,
            missing_critical=list(dict.fromkeys(missing)),
            suggested_additions=suggestions,
        )

    # ── Provider selection ───────────────────────────────────────────────

    def find_providers_for_capabilities(
        self,
        capabilities: list[str],
        required: list[str] | None = None,
        preferred: list[str] | None = None,
        excluded: list[str] | None = None,
        taxonomies: list[CapabilityTaxonomy] | None = None,
        max_providers: int = 5,
        allow_partial: bool = True,
    ) -> ProviderSearchResult:
        """
        Pick providers that together cover ``capabilities``.

        Greedy set-cover: candidates are ranked once by score and taken in
        order while they add at least one uncovered capability. This is an
        approximation; it does not search for the minimal provider set.
        """
        wanted = list(dict.fromkeys(capabilities))
        if not wanted:
            return ProviderSearchResult(success=False, coverage_score=0.0)
        if max_providers < 1:
            return ProviderSearchResult(
                success=False, coverage_score=0.0, unfulfilled=list(wanted)
            )

        required = required or []
        preferred_set = set(preferred or [])
        excluded_set = set(excluded or [])
        taxonomy_set = {coerce_enum(CapabilityTaxonomy, t, "taxonomy") for t in taxonomies or []}

        provider_caps: dict[str, list[str]] = {}
        for name in wanted:
            for provider_id in self.get_providers(name):
                if provider_id in excluded_set:
                    continue
                provider_caps.setdefault(provider_id, []).append(name)

        candidates = []
        for provider_id, covered in provider_caps.items():
            coverage = len(covered) / len(wanted)
            if required:
                required_coverage = sum(1 for r in required if r in covered) / len(required)
            else:
                required_coverage = 1.0
            taxonomy_relevance = 0.0
            if taxonomy_set:
                relevant = sum(
                    1
                    for name in covered
                    if (cap := self._capabilities.get(name)) is not None
                    and taxonomy_set.intersection(cap.taxonomy)
                )
                taxonomy_relevance = relevant / min(len(covered), len(taxonomy_set))
            bonus = 1.0 if provider_id in preferred_set else 0.0
            score = (
                COVERAGE_WEIGHT * coverage
                + REQUIRED_WEIGHT * required_coverage
                + TAXONOMY_WEIGHT * taxonomy_relevance
                + PREFERRED_WEIGHT * bonus
            )
            candidates.append(ProviderMatch(provider_id, covered, score))

        # Stable sort keeps provider-id order among equal scores
        candidates.sort(key=lambda m: (-m.score, m.provider_id))

        selected: list[ProviderMatch] = []
        covered_set: set[str] = set()
        for match in candidates:
            if len(selected) >= max_providers:
                break
            new = [c for c in match.capabilities if c not in covered_set]
            if new:
                selected.append(match)
                covered_set.update(new)
            if len(covered_set) == len(wanted):
                break

        fulfilled = [c for c in wanted if c in covered_set]
        unfulfilled = [c for c in wanted if c not in covered_set]
        full = not unfulfilled
        success = full or (
            allow_partial and bool(covered_set) and all(r in covered_set for r in required)
        )

        logger.debug(
            "Provider search for %d capabilities: %d selected, %d unfulfilled",
            len(wanted),
            len(selected),
            len(unfulfilled),
        )
        return ProviderSearchResult(
            success=success,
            coverage_score=len(fulfilled) / len(wanted),
            providers=selected,
            fulfilled=fulfilled,
            unfulfilled=unfulfilled,
        )

    def get_stats(self) -> dict[str, Any]:
        edge_count = sum(len(edges) for edges in self._compatibility.values())
        providers = {p for ps in self._providers.values() for p in ps}
        return {
            "capabilities": len(self._capabilities),
            "providers": len(providers),
            "compatibility_edges": edge_count,
        }


def _find_edge(
    edges: list[CompatibilityEdge], target: str, edge_type: CompatibilityType
) -> CompatibilityEdge | None:
    for edge in edges:
        if edge.target == target and edge.type == edge_type:
            return edge
    return None
