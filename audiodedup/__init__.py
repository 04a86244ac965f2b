"""Audio Dedup Pipeline - Core application modules.

Provides:
- SQLite models and the admission ledger (exact-duplicate rejection)
- Similarity engine and warning store (perceptual near-duplicates)
- Notification hub for live similarity events
- Core utilities: atomic_io, hashing, media types
"""

__version__ = "0.1.0"
