"""Registry access, extraction, indexing and the install orchestrator."""
