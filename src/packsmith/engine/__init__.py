"""Pure pack transforms: build/parse, diff, patch and determinism reports."""
