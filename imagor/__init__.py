"""Blobs with type sniffing, fan-out readers, request contexts, errors, suppression and response helpers."""

__version__ = "1.4.5"