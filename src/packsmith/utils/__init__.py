"""Shared utilities: hashing, filesystem helpers and worker offload."""
