"""Business logic layer for drive app.

This package contains all business logic for the drive:
- Quota ledger (the only writer of storage usage)
- Folder and file operations, including cascading folder delete
- Read-only listing, search and dashboard queries

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).
"""
