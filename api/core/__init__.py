"""
Shared, cross-cutting code for the API.

`core/` should contain small building blocks that multiple features use
(engine client, settings, logging, the record model). Keep feature-specific
query building and business logic in the corresponding feature package
(e.g. `ingestion/`, `retrieval/`).
"""
