"""Core utilities for the Huddle backend."""

from .storage import build_download_url, delete_stored, resolve_path, store_upload

__all__ = ["store_upload", "delete_stored", "resolve_path", "build_download_url"]
