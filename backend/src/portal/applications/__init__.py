"""Application submission, slot replacement and review endpoints."""
