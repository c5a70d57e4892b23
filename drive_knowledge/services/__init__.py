"""Business services: ingestion, retrieval, access control and the tool surface."""
