"""Byte-level codecs: canonical JSON and the deterministic archive container."""
