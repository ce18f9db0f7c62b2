"""Domain layer — SCSI commands, diagnostic records, run lifecycle.

This layer depends only on stdlib and pydantic.
It must never import from services, infrastructure, commands, or config.
"""
