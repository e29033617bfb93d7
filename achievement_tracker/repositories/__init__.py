from achievement_tracker.repositories.references import InMemoryReferencesRepository, PostgresReferencesRepository

__all__ = [
    "InMemoryReferencesRepository",
    "PostgresReferencesRepository",
]
