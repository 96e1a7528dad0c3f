"""Data access for pipeline entities and job tracking."""
