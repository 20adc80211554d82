"""Orchestrator for the spatialvi meta-workflow.

Launches the staging, spatialvi and synindex pipelines on Seqera Platform one
after another, waiting for each run to succeed before starting the next.

CLI usage is available via `python -m processes.orchestrator`.
"""
from __future__ import annotations
