"""Kernel utilities shared across the engine's components.

Rules:
- Kernel code must not import from graph/decisions/search/service modules.
- Kernel utilities should stay small and stable; avoid business logic here.
"""
