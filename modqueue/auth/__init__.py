"""Reviewer identity — explicit sessions, role hierarchy, and credential lookup."""
