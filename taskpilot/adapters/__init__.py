"""Adapters for external collaborators (LLM providers, workspaces)."""
