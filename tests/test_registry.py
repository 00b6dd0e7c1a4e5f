"""
Tests for the capability registry.

Covers: registration and merging, reciprocal compatibility edges, similarity,
combination scoring, greedy provider selection.
"""

import pytest

from negotiator.capabilities.models import (
    Capability,
    CapabilityLevel,
    CapabilityTaxonomy,
    CompatibilityEdge,
    CompatibilityType,
)
from negotiator.capabilities.registry import CapabilityRegistry
from negotiator.core.events import CapabilityEvent, EventBus
from negotiator.errors import ValidationError


def edge(target: str, kind: str, strength: float) -> CompatibilityEdge:
    return CompatibilityEdge(target=target, type=CompatibilityType(kind), strength=strength)


def edges_to(registry: CapabilityRegistry, source: str, target: str, kind: str) -> list:
    return [
        e
        for e in registry.get_edges(source)
        if e.target == target and e.type == CompatibilityType(kind)
    ]


@pytest.fixture
def registry() -> CapabilityRegistry:
    return CapabilityRegistry()


# ═══════════════════════════════════════════════════════════════════════════
# REGISTRATION
# ═══════════════════════════════════════════════════════════════════════════


class TestRegistration:
    def test_basic_matching(self, registry: CapabilityRegistry) -> None:
        registry.register(Capability(name="web_research"), "A1")

        assert registry.has_capability("web_research")
        assert registry.get_providers("web_research") == ["A1"]
        assert not registry.has_capability("quantum_computing")
        assert registry.get_providers("quantum_computing") == []

    def test_reregistration_keeps_provider_set(self, registry: CapabilityRegistry) -> None:
        cap = Capability(name="a", compatibilities=[edge("b", "complementary", 0.8)])
        registry.register(cap, "p1")
        registry.register(cap, "p1")

        assert registry.get_providers("a") == ["p1"]
        assert len(edges_to(registry, "a", "b", "complementary")) == 1
        assert len(edges_to(registry, "b", "a", "complementary")) == 1

    def test_merge_unions_taxonomy_and_overrides_level(self, registry: CapabilityRegistry) -> None:
        registry.register(
            Capability(name="a", description="first", taxonomy=[CapabilityTaxonomy.ANALYSIS]), "p1"
        )
        merged = registry.register(
            Capability(
                name="a",
                level=CapabilityLevel.EXPERT,
                taxonomy=[CapabilityTaxonomy.EXECUTION, CapabilityTaxonomy.ANALYSIS],
            ),
            "p2",
        )

        assert merged.taxonomy == [CapabilityTaxonomy.ANALYSIS, CapabilityTaxonomy.EXECUTION]
        assert merged.level == CapabilityLevel.EXPERT
        assert merged.description == "first"
        assert registry.get_providers("a") == ["p1", "p2"]

    def test_provider_capabilities(self, registry: CapabilityRegistry) -> None:
        registry.register(Capability(name="a"), "p1")
        registry.register(Capability(name="b"), "p1")
        registry.register(Capability(name="c"), "p2")
        assert sorted(registry.get_provider_capabilities("p1")) == ["a", "b"]

    def test_taxonomy_lookup(self, registry: CapabilityRegistry) -> None:
        registry.register(Capability(name="a", taxonomy=["planning"]), "p1")
        registry.register(Capability(name="b", taxonomy=["execution"]), "p1")
        assert registry.get_by_taxonomy("planning") == ["a"]

    def test_emits_registered_event(self) -> None:
        bus = EventBus()
        seen: list[CapabilityEvent] = []
        bus.subscribe(CapabilityEvent, seen.append)
        CapabilityRegistry(events=bus).register(Capability(name="a"), "p1")
        assert [(e.capability, e.provider_id) for e in seen] == [("a", "p1")]

    def test_blank_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Capability(name="  ")


# ═══════════════════════════════════════════════════════════════════════════
# COMPATIBILITY GRAPH
# ═══════════════════════════════════════════════════════════════════════════


class TestCompatibility:
    @pytest.mark.parametrize("kind", ["complementary", "enhances"])
    def test_symmetric_edges_get_reciprocal(self, registry: CapabilityRegistry, kind: str) -> None:
        registry.register(Capability(name="a", compatibilities=[edge("b", kind, 0.8)]), "p1")

        back = edges_to(registry, "b", "a", kind)
        assert len(back) == 1
        assert back[0].strength >= 0.8

    def test_symmetric_conflict_takes_max(self, registry: CapabilityRegistry) -> None:
        registry.register(Capability(name="a", compatibilities=[edge("b", "complementary", 0.8)]), "p1")
        registry.register(Capability(name="b", compatibilities=[edge("a", "complementary", 0.5)]), "p2")

        assert edges_to(registry, "a", "b", "complementary")[0].strength == 0.8
        assert edges_to(registry, "b", "a", "complementary")[0].strength == 0.8

    def test_prerequisite_inverse_installed_once(self, registry: CapabilityRegistry) -> None:
        registry.register(Capability(name="a", compatibilities=[edge("b", "prerequisite", 0.6)]), "p1")
        registry.register(Capability(name="a", compatibilities=[edge("b", "prerequisite", 0.9)]), "p1")

        inverse = edges_to(registry, "b", "a", "prerequisite")
        assert len(inverse) == 1
        assert inverse[0].strength >= 0.6
        assert edges_to(registry, "a", "b", "prerequisite")[0].strength == 0.9

    def test_conflicts_are_not_mirrored(self, registry: CapabilityRegistry) -> None:
        registry.register(Capability(name="a", compatibilities=[edge("b", "conflicts", 0.4)]), "p1")
        assert edges_to(registry, "b", "a", "conflicts") == []

    def test_compatible_and_complementary_lookups(self, registry: CapabilityRegistry) -> None:
        registry.register(Capability(name="a", compatibilities=[edge("b", "complementary", 0.7)]), "p1")

        assert registry.get_compatible("a") == [
            {"name": "b", "compatibility_type": "complementary", "score": 0.7}
        ]
        assert registry.get_complementary(["a"]) == ["b"]
        assert registry.get_complementary(["a", "b"]) == []

    def test_strength_out_of_range(self) -> None:
        with pytest.raises(ValidationError):
            edge("b", "complementary", 1.5)


# ═══════════════════════════════════════════════════════════════════════════
# SIMILARITY
# ═══════════════════════════════════════════════════════════════════════════


class TestSimilarity:
    def test_scores_are_bounded_and_exclude_self(self, registry: CapabilityRegistry) -> None:
        registry.register(
            Capability(name="data-analysis", description="analyse tabular data", taxonomy=["analysis"]),
            "p1",
        )
        registry.register(
            Capability(name="data-analytics", description="analyse data streams", taxonomy=["analysis"]),
            "p1",
        )
        registry.register(Capability(name="web_research", description="search the web"), "p2")
        registry.register(Capability(name="code_review"), "p3")

        for cap in registry.list_capabilities():
            similar = registry.get_similar(cap.name)
            assert all(s.name != cap.name for s in similar)
            assert all(0.2 < s.score <= 1.0 for s in similar)
            assert [s.score for s in similar] == sorted((s.score for s in similar), reverse=True)

        assert "data-analytics" in [s.name for s in registry.get_similar("data-analysis")]

    def test_pairwise_similarity_clamped(self, registry: CapabilityRegistry) -> None:
        registry.register(Capability(name="x", description="same words", taxonomy=["creative"]), "p1")
        registry.register(Capability(name="x2", description="same words", taxonomy=["creative"]), "p1")
        assert 0.0 <= registry.similarity("x", "x2") <= 1.0


# ═══════════════════════════════════════════════════════════════════════════
# COMBINATION SCORING
# ═══════════════════════════════════════════════════════════════════════════


class TestCombination:
    def test_composition_with_missing_prerequisite(self, registry: CapabilityRegistry) -> None:
        registry.register(
            Capability(
                name="a",
                taxonomy=["analysis"],
                compatibilities=[edge("b", "complementary", 0.8), edge("c", "prerequisite", 0.5)],
            ),
            "p1",
        )
        registry.register(Capability(name="b", taxonomy=["execution"]), "p2")

        score = registry.score_capability_combination(["a", "b"])

        assert score.complementarity_score == pytest.approx(0.8)
        assert score.taxonomic_coverage_score == pytest.approx(2 / 7)
        assert score.missing_critical == ["c"]
        assert score.composition_score == pytest.approx(0.6 * 0.8 + 0.3 * 2 / 7 - 0.05)

    def test_suggestions_ranked_by_strength(self, registry: CapabilityRegistry) -> None:
        registry.register(
            Capability(
                name="a",
                compatibilities=[
                    edge("weak", "complementary", 0.2),
                    edge("strong", "complementary", 0.9),
                    edge("mid", "complementary", 0.5),
                    edge("tail", "complementary", 0.1),
                ],
            ),
            "p1",
        )
        score = registry.score_capability_combination(["a"])
        assert score.suggested_additions == ["strong", "mid", "weak"]

    def test_empty_combination(self, registry: CapabilityRegistry) -> None:
        assert registry.score_capability_combination([]).composition_score == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# PROVIDER SELECTION
# ═══════════════════════════════════════════════════════════════════════════


class TestProviderSelection:
    @pytest.fixture
    def populated(self, registry: CapabilityRegistry) -> CapabilityRegistry:
        registry.register(Capability(name="a"), "p1")
        registry.register(Capability(name="b"), "p1")
        registry.register(Capability(name="c"), "p2")
        registry.register(Capability(name="a"), "p3")
        return registry

    def test_full_coverage(self, populated: CapabilityRegistry) -> None:
        result = populated.find_providers_for_capabilities(["a", "b", "c"])

        assert result.success
        assert result.provider_ids == ["p1", "p2"]
        assert result.coverage_score == 1.0
        assert result.unfulfilled == []

    def test_never_exceeds_max_providers(self, populated: CapabilityRegistry) -> None:
        result = populated.find_providers_for_capabilities(["a", "b", "c"], max_providers=1)

        assert len(result.providers) == 1
        assert result.provider_ids == ["p1"]
        assert result.coverage_score == pytest.approx(2 / 3)
        assert result.unfulfilled == ["c"]
        assert result.success

    def test_partial_not_allowed(self, populated: CapabilityRegistry) -> None:
        result = populated.find_providers_for_capabilities(
            ["a", "b", "c"], max_providers=1, allow_partial=False
        )
        assert not result.success

    def test_required_capability_drives_choice(self, populated: CapabilityRegistry) -> None:
        result = populated.find_providers_for_capabilities(
            ["a", "b", "c"], required=["c"], max_providers=1
        )
        assert result.provider_ids == ["p2"]
        assert result.success

    def test_required_uncovered_fails_partial(self, populated: CapabilityRegistry) -> None:
        result = populated.find_providers_for_capabilities(
            ["a", "b", "c"], required=["c"], excluded=["p2"]
        )
        assert not result.success
        assert result.unfulfilled == ["c"]

    def test_preferred_bonus(self, populated: CapabilityRegistry) -> None:
        result = populated.find_providers_for_capabilities(["a"], preferred=["p3"], max_providers=1)
        assert result.provider_ids == ["p3"]

    def test_excluded_providers(self, populated: CapabilityRegistry) -> None:
        result = populated.find_providers_for_capabilities(["a", "b"], excluded=["p1"])
        assert "p1" not in result.provider_ids
        assert result.fulfilled == ["a"]

    def test_unknown_capabilities(self, populated: CapabilityRegistry) -> None:
        result = populated.find_providers_for_capabilities(["zzz"])
        assert not result.success
        assert result.coverage_score == 0.0

    def test_empty_request(self, populated: CapabilityRegistry) -> None:
        result = populated.find_providers_for_capabilities([])
        assert not result.success
        assert result.providers == []

    def test_coverage_score_is_exact_ratio(self, populated: CapabilityRegistry) -> None:
        for limit in range(0, 4):
            result = populated.find_providers_for_capabilities(
                ["a", "b", "c", "zzz"], max_providers=limit
            )
            assert len(result.providers) <= limit
            assert result.coverage_score == len(result.fulfilled) / 4
