"""Batch pipelines for ingestion, matching and timestamp sync.

Each pipeline is callable on its own, from the job runner or the CLI.
"""
