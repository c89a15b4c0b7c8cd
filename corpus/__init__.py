"""
Quiz content-supply corpus -- domain models, persistence, deduplication.

Package layout:
    models/         Pydantic item models and backend payload validators
    similarity      Edit-distance similarity and numeric fingerprints
    dedup           Near-duplicate identification over a batch of items
    corpus_store    SQLite item store with an image sub-store
    remote_mirror   Optional JSON-document mirror of the item store
    builtin         Static fallback items, sub-topics, placement builder
"""
