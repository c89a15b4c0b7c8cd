"""
corpus/models/ -- Pydantic v2 models for the quiz content-supply engine.

Submodules:
    items       Item envelope, kinds, placement payload, illustration record.
    validators  Backend payload validation and normalisation.
"""

from corpus.models.items import (
    Category,
    IllustrationRecord,
    Item,
    ItemKind,
    PlacementConfig,
)

__all__ = ["Category", "IllustrationRecord", "Item", "ItemKind", "PlacementConfig"]
