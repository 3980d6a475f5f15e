"""Orchestration services: catalog, providers, cache, routing, credits and the orchestrator."""
