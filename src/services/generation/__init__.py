"""Streaming generation: module registry, jobs and orchestration."""
