"""Picvault — FastAPI REST API layer.

This package contains the FastAPI application, the Pydantic request models,
the upload compression pipeline, and the file-backed gallery store.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request validation.
compression
    WebP/AVIF variant generation for uploads.
gallery_store
    File-backed gallery reconciliation, filtering, and pagination helpers.
"""
