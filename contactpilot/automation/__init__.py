"""Automation pipeline: form filling, submission checks and orchestration."""
