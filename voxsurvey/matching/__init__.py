"""Transcript normalization, edit distance and answer matching."""
