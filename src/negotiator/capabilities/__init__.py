"""Capability registry, advertisements and point-to-point negotiation."""

from negotiator.capabilities.advertisement import AdvertisementStore, ProviderListing
from negotiator.capabilities.models import (
    Advertisement,
    AdvertisedCapability,
    Availability,
    AvailabilityStatus,
    Capability,
    CapabilityLevel,
    CapabilityTaxonomy,
    CompatibilityEdge,
    CompatibilityType,
    ConfidenceLevel,
)
from negotiator.capabilities.negotiation import (
    CapabilityInquiry,
    CapabilityInquiryResponse,
    CapabilityNegotiator,
    CommitmentLevel,
    NegotiationResult,
)
from negotiator.capabilities.registry import (
    CapabilityRegistry,
    CombinationScore,
    ProviderMatch,
    ProviderSearchResult,
)

__all__ = [
    "Advertisement",
    "AdvertisedCapability",
    "AdvertisementStore",
    "Availability",
    "AvailabilityStatus",
    "Capability",
    "CapabilityInquiry",
    "CapabilityInquiryResponse",
    "CapabilityLevel",
    "CapabilityNegotiator",
    "CapabilityRegistry",
    "CapabilityTaxonomy",
    "CombinationScore",
    "CommitmentLevel",
    "CompatibilityEdge",
    "CompatibilityType",
    "ConfidenceLevel",
    "NegotiationResult",
    "ProviderListing",
    "ProviderMatch",
    "ProviderSearchResult",
]
