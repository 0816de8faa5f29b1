"""Helpers shared by the backend services: logging, tracing, workers, database."""
