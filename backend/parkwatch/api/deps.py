from parkwatch.services.persistence import PersistenceAdapter, SqlPersistence


def get_persistence() -> PersistenceAdapter:
    return SqlPersistence()
