# api/__init__.py
"""HTTP surface for triggering and inspecting deployments."""
