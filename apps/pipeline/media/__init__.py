"""Media download and frame extraction helpers."""
