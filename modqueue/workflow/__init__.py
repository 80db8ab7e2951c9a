"""Workflow — item lifecycle, bulk remediation and profile actions."""
