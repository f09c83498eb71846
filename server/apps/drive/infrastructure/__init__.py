"""Infrastructure layer for drive app.

This package contains integrations with external systems:
- Custom storage backend (S3/MinIO/R2)
- Blob store adapter over any Django storage
- Name validation and content metadata (MIME type, kind, size)

Keep infrastructure concerns separate from business logic.
"""
