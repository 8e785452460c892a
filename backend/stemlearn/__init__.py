"""Application package for the STEM Learn backend.

This package exposes the service, repository, tracking and model modules
used by the FastAPI application. It is intentionally lightweight;
individual modules contain the concrete implementations and
documentation.
"""
