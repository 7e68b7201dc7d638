"""HTTP request handlers for the S3 proxy."""
