"""
Form Builder Storage — the StorageOperations port and its backends.

    memory  InMemoryStorageOperations
    sql     SqlStorageOperations (SQLAlchemy)
"""
