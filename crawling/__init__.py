"""Store page retrieval: browser fetcher and pagination."""
