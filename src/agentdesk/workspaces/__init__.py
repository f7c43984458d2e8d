"""Workspaces and their ordered agents."""
