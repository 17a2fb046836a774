"""Object store backends (S3 compatible storage and an in-memory store for development and tests)."""
