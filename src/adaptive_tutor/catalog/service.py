from __future__ import annotations

import logging
import random
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

import yaml
from pydantic import ValidationError

from adaptive_tutor.catalog.library import CONCEPT_LIBRARY, fallback_questions
from adaptive_tutor.data_models import ConceptCatalogEntry, DifficultyTier, GenericFallback, MaterialPick
from adaptive_tutor.errors import CatalogMiss

logger = logging.getLogger(__name__)

Material = Union[ConceptCatalogEntry, GenericFallback]


def _pick(
    options: Sequence[str], exclude: Set[str], rng: random.Random
) -> Optional[MaterialPick]:
    if not options:
        return None
    fresh = [option for option in options if option not in exclude]
    if fresh:
        return MaterialPick(text=rng.choice(fresh))
    return MaterialPick(text=rng.choice(list(options)), repeated=True)


def pick_guiding_question(
    material: Material, exclude: Set[str], rng: Optional[random.Random] = None
) -> MaterialPick:
    """
    Choose a guiding question not yet asked in the session.

    Picks uniformly among questions outside `exclude`. Once every question has been
    asked, a repeat is allowed and the pick is flagged with `repeated=True`.
    """
    pick = _pick(material.guiding_questions, exclude, rng or random.Random())
    if pick is None:
        raise ValueError("material carries no guiding questions")
    return pick


def pick_analogy(
    material: Material, exclude: Set[str], rng: Optional[random.Random] = None
) -> Optional[MaterialPick]:
    """Choose an analogy not yet used in the session; None when the material has none."""
    return _pick(material.analogies, exclude, rng or random.Random())


def pick_real_world_example(
    material: Material, exclude: Set[str], rng: Optional[random.Random] = None
) -> Optional[MaterialPick]:
    """Choose a real-world example not yet used in the session; None when the material has none."""
    return _pick(material.real_world_examples, exclude, rng or random.Random())


def _entries_from_mapping(
    payload: Mapping[str, Mapping[str, object]],
) -> Iterable[ConceptCatalogEntry]:
    """Expand a `subject -> concept -> material` mapping; a concept may list several tiers."""
    for subject, concepts in payload.items():
        for concept_id, material in (concepts or {}).items():
            variants = material if isinstance(material, list) else [material]
            for variant in variants:
                yield ConceptCatalogEntry(concept_id=concept_id, subject=subject, **variant)


class ConceptCatalog:
    """
    Read-only lookup of pedagogical material per concept.

    Entries are indexed by concept and tier. The catalog never mutates after
    construction, so a single instance is shared by every session and may be read
    concurrently. Randomness for material selection comes from an injectable
    `random.Random` so tests can pin the picks.
    """

    def __init__(
        self,
        entries: Iterable[ConceptCatalogEntry],
        rng: Optional[random.Random] = None,
    ):
        self.rng = rng or random.Random()
        self._entries: Dict[str, Dict[str, Dict[DifficultyTier, ConceptCatalogEntry]]] = defaultdict(dict)
        for entry in entries:
            tiers = self._entries[entry.concept_id].setdefault(entry.subject, {})
            tiers[entry.difficulty_tier] = entry

    @classmethod
    def builtin(cls, rng: Optional[random.Random] = None) -> "ConceptCatalog":
        """Catalog backed by the bundled concept library only."""
        return cls(_entries_from_mapping(CONCEPT_LIBRARY), rng=rng)

    @classmethod
    def from_sources(
        cls,
        catalog_path: Optional[Path] = None,
        seed: Optional[int] = None,
    ) -> "ConceptCatalog":
        """
        Build the catalog from the bundled library plus an optional YAML file.

        Entries in the YAML file replace bundled entries with the same concept,
        subject and tier. Invalid entries (including empty material lists) abort
        loading with a ValueError naming the file.
        """
        entries: Dict[tuple, ConceptCatalogEntry] = {
            (e.concept_id, e.subject, e.difficulty_tier): e
            for e in _entries_from_mapping(CONCEPT_LIBRARY)
        }
        if catalog_path is not None:
            if not catalog_path.exists():
                raise FileNotFoundError(f"Catalog file not found: {catalog_path}")
            with catalog_path.open("r", encoding="utf-8") as handle:
                payload = yaml.safe_load(handle) or {}
            try:
                extra = list(_entries_from_mapping(payload))
            except (ValidationError, TypeError) as exc:
                raise ValueError(f"Invalid catalog file {catalog_path}: {exc}") from exc
            for entry in extra:
                entries[(entry.concept_id, entry.subject, entry.difficulty_tier)] = entry
            logger.info("Loaded %s catalog entries from %s", len(extra), catalog_path)
        rng = random.Random(seed) if seed is not None else None
        return cls(entries.values(), rng=rng)

    def concept_ids(self) -> List[str]:
        return sorted(self._entries)

    def subject_of(self, concept_id: str) -> Optional[str]:
        subjects = self._entries.get(concept_id)
        if not subjects:
            return None
        return next(iter(subjects))

    def concepts_in_subject(self, subject: str) -> List[ConceptCatalogEntry]:
        """Every entry of a subject ordered by tier, one per concept (its easiest tier)."""
        found: List[ConceptCatalogEntry] = []
        for subjects in self._entries.values():
            tiers = subjects.get(subject)
            if tiers:
                found.append(tiers[min(tiers, key=lambda tier: tier.rank)])
        return sorted(found, key=lambda entry: (entry.difficulty_tier.rank, entry.concept_id))

    def lookup(
        self,
        concept_id: str,
        subject: Optional[str] = None,
        difficulty_tier: Optional[DifficultyTier] = None,
    ) -> Optional[ConceptCatalogEntry]:
        """
        Return the entry for a concept, or None when the catalog has no such concept.

        The requested subject is searched first, then every subject. When the concept
        exists but not at the requested tier, the nearest tier at or below it is used,
        else the nearest tier above.
        """
        subjects = self._entries.get(concept_id)
        if not subjects:
            return None
        tiers = subjects.get(subject) if subject else None
        if tiers is None:
            tiers = next(iter(subjects.values()))
        if difficulty_tier is None or difficulty_tier in tiers:
            if difficulty_tier is None:
                return tiers[min(tiers, key=lambda tier: tier.rank)]
            return tiers[difficulty_tier]
        below = [tier for tier in tiers if tier.rank < difficulty_tier.rank]
        if below:
            return tiers[max(below, key=lambda tier: tier.rank)]
        return tiers[min(tiers, key=lambda tier: tier.rank)]

    def require(
        self,
        concept_id: str,
        subject: Optional[str] = None,
        difficulty_tier: Optional[DifficultyTier] = None,
    ) -> ConceptCatalogEntry:
        """Like `lookup`, but raise CatalogMiss instead of returning None."""
        entry = self.lookup(concept_id, subject, difficulty_tier)
        if entry is None:
            raise CatalogMiss(concept_id)
        return entry

    @staticmethod
    def generic_fallback(topic: str) -> GenericFallback:
        """Five templated guiding questions for an uncatalogued topic."""
        return GenericFallback(topic=topic, guiding_questions=fallback_questions(topic))

    def resolve(
        self,
        concept_id: str,
        subject: Optional[str] = None,
        difficulty_tier: Optional[DifficultyTier] = None,
    ) -> Material:
        """Catalog entry when one exists, generic fallback otherwise. Never raises for unknown concepts."""
        try:
            return self.require(concept_id, subject, difficulty_tier)
        except CatalogMiss:
            logger.info("Catalog miss for %s; using generic fallback", concept_id)
            return self.generic_fallback(concept_id)

    def pick_guiding_question(self, material: Material, exclude: Set[str]) -> MaterialPick:
        return pick_guiding_question(material, exclude, self.rng)

    def pick_analogy(self, material: Material, exclude: Set[str]) -> Optional[MaterialPick]:
        return pick_analogy(material, exclude, self.rng)

    def pick_real_world_example(self, material: Material, exclude: Set[str]) -> Optional[MaterialPick]:
        return pick_real_world_example(material, exclude, self.rng)

    def misconception_for(self, material: Material) -> Optional[str]:
        if not material.common_misconceptions:
            return None
        return self.rng.choice(list(material.common_misconceptions))

    def visual_aid_for(self, material: Material, exclude: Optional[Set[str]] = None) -> Optional[str]:
        """A visual aid not in `exclude`, cycling back to any aid once all were shown."""
        if not material.visual_aids:
            return None
        remaining = [aid for aid in material.visual_aids if aid not in (exclude or set())]
        return self.rng.choice(remaining or list(material.visual_aids))
