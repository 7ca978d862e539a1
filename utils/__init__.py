"""Shared utilities: configuration, storage, protocol client and collaborators."""
