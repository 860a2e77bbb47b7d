"""Service layer: import pipeline, storage and analytics."""
