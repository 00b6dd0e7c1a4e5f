"""
Capability Advertisement Store

Agents broadcast time-boxed advertisements of what they can do, how confident
they are and how available they are. Lookups only consider each agent's most
recent still-valid advertisement. Expired advertisements are announced by the
sweep but kept as history.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from negotiator.capabilities.models import (
    AdvertisedCapability,
    Advertisement,
    Availability,
    AvailabilityStatus,
)
from negotiator.core.clock import Clock, SystemClock
from negotiator.core.events import AdvertisementEvent, AdvertisementEventKind, EventBus
from negotiator.core.store import KeyValueStore, MemoryStore
from negotiator.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY = 3600.0

AVAILABILITY_FILTERS = ("available", "limited", "any")

_UNSET: Any = object()


@dataclass
class ProviderListing:
    """An agent's current offer for one capability."""

    agent_id: str
    advertisement_id: str
    capability: AdvertisedCapability
    availability: Availability

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "advertisement_id": self.advertisement_id,
            "capability": self.capability.name,
            "confidence_level": self.capability.confidence_level.value,
            "confidence_score": self.capability.confidence_score,
            "availability": self.availability.status.value,
            "current_load": self.availability.current_load,
        }


class AdvertisementStore:
    """Time-boxed capability advertisements indexed by capability."""

    def __init__(
        self,
        events: EventBus | None = None,
        clock: Clock | None = None,
        default_validity: float = DEFAULT_VALIDITY,
        advertisements: KeyValueStore[str, Advertisement] | None = None,
    ) -> None:
        self.events = events or EventBus()
        self.clock = clock or SystemClock()
        self.default_validity = default_validity
        self._ads: KeyValueStore[str, Advertisement] = advertisements or MemoryStore()
        self._agent_ads: dict[str, list[str]] = {}
        self._providers: dict[str, set[str]] = {}
        self._announced_expired: set[str] = set()

    def create(
        self,
        agent_id: str,
        capabilities: list[AdvertisedCapability],
        availability: Availability | None = None,
        validity: float | None = None,
        sender_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Advertisement:
        """Broadcast a new advertisement for ``agent_id``."""
        if not agent_id:
            raise ValidationError("agent_id is required")
        validity = self.default_validity if validity is None else validity
        if validity <= 0:
            raise ValidationError(f"validity must be > 0, got {validity}")

        now = self.clock.now()
        known = self._known_capabilities(agent_id)
        ad = Advertisement(
            id=f"ad-{uuid.uuid4().hex[:12]}",
            sender_id=agent_id,
            sender_name=sender_name,
            capabilities=list(capabilities),
            availability=availability or Availability(),
            valid_until=now + validity,
            timestamp=now,
            metadata=dict(metadata or {}),
        )
        self._ads.put(ad.id, ad)
        self._agent_ads.setdefault(agent_id, []).append(ad.id)
        for name in ad.capability_names():
            self._providers.setdefault(name, set()).add(agent_id)

        self._emit(AdvertisementEventKind.BROADCAST, ad)
        for name in ad.capability_names():
            kind = (
                AdvertisementEventKind.CAPABILITY_UPDATED
                if name in known
                else AdvertisementEventKind.CAPABILITY_ADDED
            )
            self._emit(kind, ad, name)

        logger.info(
            "Agent %s advertised %d capabilities (valid %.0fs)",
            agent_id,
            len(ad.capabilities),
            validity,
        )
        return ad

    def update(
        self,
        advertisement_id: str,
        capabilities: list[AdvertisedCapability] = _UNSET,
        availability: Availability = _UNSET,
        validity: float = _UNSET,
        sender_name: str | None = _UNSET,
        metadata: dict[str, Any] = _UNSET,
    ) -> Advertisement | None:
        """
        Replace the given fields of a live advertisement.

        Returns None when the advertisement is unknown or already expired.
        """
        ad = self._ads.get(advertisement_id)
        now = self.clock.now()
        if ad is None or not ad.is_valid(now):
            logger.debug("Ignoring update for missing or expired advertisement %s", advertisement_id)
            return None

        old_names = set(ad.capability_names())
        if capabilities is not _UNSET:
            ad.capabilities = list(capabilities)
        if availability is not _UNSET:
            ad.availability = availability
        if validity is not _UNSET:
            if validity <= 0:
                raise ValidationError(f"validity must be > 0, got {validity}")
            ad.valid_until = now + validity
        if sender_name is not _UNSET:
            ad.sender_name = sender_name
        if metadata is not _UNSET:
            ad.metadata = {**ad.metadata, **metadata}
        ad.timestamp = now
        self._ads.put(ad.id, ad)

        if capabilities is not _UNSET:
            new_names = ad.capability_names()
            for name in sorted(old_names - set(new_names)):
                if name not in self._known_capabilities(ad.sender_id):
                    self._providers.get(name, set()).discard(ad.sender_id)
                self._emit(AdvertisementEventKind.CAPABILITY_REMOVED, ad, name)
            for name in new_names:
                self._providers.setdefault(name, set()).add(ad.sender_id)
                kind = (
                    AdvertisementEventKind.CAPABILITY_UPDATED
                    if name in old_names
                    else AdvertisementEventKind.CAPABILITY_ADDED
                )
                self._emit(kind, ad, name)

        self._emit(AdvertisementEventKind.UPDATED, ad)
        return ad

    def get(self, advertisement_id: str) -> Advertisement | None:
        return self._ads.get(advertisement_id)

    def get_agent_advertisements(self, agent_id: str) -> list[Advertisement]:
        ads = (self._ads.get(ad_id) for ad_id in self._agent_ads.get(agent_id, []))
        return [ad for ad in ads if ad is not None]

    def get_latest_valid(self, agent_id: str) -> Advertisement | None:
        """Most recent advertisement of ``agent_id`` that has not expired."""
        now = self.clock.now()
        valid = [ad for ad in self.get_agent_advertisements(agent_id) if ad.is_valid(now)]
        if not valid:
            return None
        # Newest first so creation order breaks timestamp ties
        return max(reversed(valid), key=lambda ad: ad.timestamp)

    def find_providers(
        self,
        capability: str,
        min_confidence: float | None = None,
        availability: str = "any",
    ) -> list[ProviderListing]:
        """
        Agents currently offering ``capability``.

        availability: "available" keeps only available agents, "limited"
        drops unavailable ones, "any" applies no filter.
        """
        if availability not in AVAILABILITY_FILTERS:
            raise ValidationError(
                f"availability filter must be one of {AVAILABILITY_FILTERS}, got {availability}"
            )

        listings = []
        for agent_id in sorted(self._providers.get(capability, ())):
            ad = self.get_latest_valid(agent_id)
            if ad is None:
                continue
            entry = ad.find(capability)
            if entry is None:
                continue
            if min_confidence is not None and entry.confidence_score < min_confidence:
                continue
            status = ad.availability.status
            if availability == "available" and status != AvailabilityStatus.AVAILABLE:
                continue
            if availability == "limited" and status == AvailabilityStatus.UNAVAILABLE:
                continue
            listings.append(ProviderListing(agent_id, ad.id, entry, ad.availability))

        listings.sort(key=lambda listing: listing.capability.confidence_score, reverse=True)
        return listings

    def sweep(self) -> int:
        """Announce newly expired advertisements. Records are kept."""
        now = self.clock.now()
        expired = 0
        for ad_id, ad in self._ads.items():
            if ad_id in self._announced_expired or ad.is_valid(now):
                continue
            try:
                self._announced_expired.add(ad_id)
                self._emit(AdvertisementEventKind.EXPIRED, ad)
                expired += 1
            except Exception:
                logger.exception("Failed to expire advertisement %s", ad_id)
        if expired:
            logger.info("Advertisement sweep: %d expired", expired)
        return expired

    def get_stats(self) -> dict[str, Any]:
        now = self.clock.now()
        ads = self._ads.values()
        return {
            "total_advertisements": len(ads),
            "valid_advertisements": sum(1 for ad in ads if ad.is_valid(now)),
            "advertising_agents": len(self._agent_ads),
            "indexed_capabilities": sum(1 for p in self._providers.values() if p),
        }

    def _known_capabilities(self, agent_id: str) -> set[str]:
        names: set[str] = set()
        now = self.clock.now()
        for ad in self.get_agent_advertisements(agent_id):
            if ad.is_valid(now):
                names.update(ad.capability_names())
        return names

    def _emit(
        self, kind: AdvertisementEventKind, ad: Advertisement, capability: str | None = None
    ) -> None:
        self.events.publish(
            AdvertisementEvent(
                kind=kind,
                timestamp=self.clock.now(),
                advertisement_id=ad.id,
                agent_id=ad.sender_id,
                capability=capability,
            )
        )
