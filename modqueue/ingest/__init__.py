"""Ingestion — converts upstream flag/report rows into moderation items."""
