"""Capability descriptions, compatibility edges and advertisement records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from negotiator.errors import ValidationError, as_number, check_fields, coerce_enum


class CapabilityLevel(StrEnum):
    BASIC = "basic"
    STANDARD = "standard"
    ADVANCED = "advanced"
    EXPERT = "expert"


class CapabilityTaxonomy(StrEnum):
    """Skill families used for coverage and contextual relevance."""

    COMMUNICATION = "communication"
    ANALYSIS = "analysis"
    PLANNING = "planning"
    EXECUTION = "execution"
    KNOWLEDGE = "knowledge"
    CREATIVE = "creative"
    COORDINATION = "coordination"
    UNCATEGORIZED = "uncategorized"


class CompatibilityType(StrEnum):
    COMPLEMENTARY = "complementary"
    PREREQUISITE = "prerequisite"
    ENHANCES = "enhances"
    CONFLICTS = "conflicts"


class ConfidenceLevel(StrEnum):
    EXPERT = "expert"
    PROFICIENT = "proficient"
    COMPETENT = "competent"
    NOVICE = "novice"


class AvailabilityStatus(StrEnum):
    AVAILABLE = "available"
    LIMITED = "limited"
    UNAVAILABLE = "unavailable"


def _check_unit(name: str, value: float) -> float:
    value = as_number(value, name)
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be in [0.0, 1.0], got {value}")
    return value


CAPABILITY_FIELDS = {
    "name",
    "description",
    "level",
    "taxonomy",
    "compatibilities",
    "contextual_relevance",
}
EDGE_FIELDS = {"target", "type", "strength", "description"}
ADVERTISED_FIELDS = {
    "name",
    "confidence_level",
    "confidence_score",
    "experience",
    "specializations",
    "limitations",
}
AVAILABILITY_FIELDS = {"status", "current_load", "next_available_slot"}


@dataclass
class CompatibilityEdge:
    """Typed, scored relationship from one capability to another."""

    target: str
    type: CompatibilityType
    strength: float
    description: str = ""

    def __post_init__(self) -> None:
        if not self.target:
            raise ValidationError("compatibility target is required")
        self.type = coerce_enum(CompatibilityType, self.type, "compatibility type")
        self.strength = _check_unit("strength", self.strength)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "type": self.type.value,
            "strength": self.strength,
            "description": self.description,
        }


@dataclass
class Capability:
    """A named skill an agent can provide."""

    name: str
    description: str = ""
    level: CapabilityLevel = CapabilityLevel.STANDARD
    taxonomy: list[CapabilityTaxonomy] = field(default_factory=list)
    compatibilities: list[CompatibilityEdge] = field(default_factory=list)
    contextual_relevance: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("capability name is required")
        self.level = coerce_enum(CapabilityLevel, self.level, "level")
        self.taxonomy = [coerce_enum(CapabilityTaxonomy, t, "taxonomy") for t in self.taxonomy]
        self.contextual_relevance = {
            context: _check_unit(f"contextual_relevance[{context}]", score)
            for context, score in self.contextual_relevance.items()
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "level": self.level.value,
            "taxonomy": [t.value for t in self.taxonomy],
            "compatibilities": [c.to_dict() for c in self.compatibilities],
            "contextual_relevance": dict(self.contextual_relevance),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Capability:
        check_fields(data, CAPABILITY_FIELDS, "capability")
        edges = []
        for c in data.get("compatibilities", []):
            check_fields(c, EDGE_FIELDS, "compatibility")
            edges.append(
                CompatibilityEdge(
                    target=c.get("target", ""),
                    type=c.get("type", CompatibilityType.COMPLEMENTARY),
                    strength=c.get("strength", 0.5),
                    description=c.get("description", ""),
                )
            )
        relevance = data.get("contextual_relevance", {})
        if not isinstance(relevance, dict):
            raise ValidationError("contextual_relevance must be an object")
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            level=data.get("level", CapabilityLevel.STANDARD),
            taxonomy=list(data.get("taxonomy", [])),
            compatibilities=edges,
            contextual_relevance=dict(relevance),
        )


@dataclass
class AdvertisedCapability:
    """One capability entry inside an advertisement."""

    name: str
    confidence_level: ConfidenceLevel = ConfidenceLevel.COMPETENT
    confidence_score: float = 0.5
    experience: int = 0
    specializations: list[str] = field(default_factory=list)
    limitations: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("advertised capability name is required")
        self.confidence_level = coerce_enum(
            ConfidenceLevel, self.confidence_level, "confidence_level"
        )
        self.confidence_score = _check_unit("confidence_score", self.confidence_score)
        self.experience = int(as_number(self.experience, "experience"))
        if self.experience < 0:
            raise ValidationError(f"experience must be >= 0, got {self.experience}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AdvertisedCapability:
        check_fields(data, ADVERTISED_FIELDS, "advertised capability")
        if "name" not in data:
            raise ValidationError("advertised capability name is required")
        return cls(**data)


@dataclass
class Availability:
    status: AvailabilityStatus = AvailabilityStatus.AVAILABLE
    current_load: float = 0.0
    next_available_slot: float | None = None

    def __post_init__(self) -> None:
        self.status = coerce_enum(AvailabilityStatus, self.status, "availability status")
        self.current_load = _check_unit("current_load", self.current_load)
        if self.next_available_slot is not None:
            self.next_available_slot = as_number(self.next_available_slot, "next_available_slot")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Availability:
        check_fields(data, AVAILABILITY_FIELDS, "availability")
        return cls(**data)


@dataclass
class Advertisement:
    """Time-boxed broadcast of an agent's capabilities."""

    id: str
    sender_id: str
    capabilities: list[AdvertisedCapability]
    availability: Availability
    valid_until: float
    timestamp: float
    sender_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_valid(self, now: float) -> bool:
        return self.valid_until > now

    def capability_names(self) -> list[str]:
        return [c.name for c in self.capabilities]

    def find(self, capability: str) -> AdvertisedCapability | None:
        for entry in self.capabilities:
            if entry.name == capability:
                return entry
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "sender_name": self.sender_name,
            "capabilities": [
                {
                    "name": c.name,
                    "confidence_level": c.confidence_level.value,
                    "confidence_score": c.confidence_score,
                    "experience": c.experience,
                    "specializations": list(c.specializations),
                    "limitations": list(c.limitations),
                }
                for c in self.capabilities
            ],
            "availability": {
                "status": self.availability.status.value,
                "current_load": self.availability.current_load,
                "next_available_slot": self.availability.next_available_slot,
            },
            "valid_until": self.valid_until,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }
