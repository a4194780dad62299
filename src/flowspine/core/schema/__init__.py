"""Bundled SQLite DDL for flowspine tables."""
