"""HTTP boundary for the workflow (FastAPI)."""
