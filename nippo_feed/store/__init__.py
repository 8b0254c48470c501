from nippo_feed.store.remote import (
    DocumentStore,
    ProfileStore,
    RecordPage,
    StoreRecord,
)
from nippo_feed.store.local import LocalStore
from nippo_feed.store.firestore import FirestoreRestStore

__all__ = [
    "DocumentStore",
    "ProfileStore",
    "RecordPage",
    "StoreRecord",
    "LocalStore",
    "FirestoreRestStore",
]
