from .channel_directory import ChannelDirectory
from .key_value import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .resume_store import PendingResume, ResumeStore

__all__ = [
    "ChannelDirectory",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "PendingResume",
    "ResumeStore",
]
