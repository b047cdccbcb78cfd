"""Store access, documents, predicates and errors for s3evolve."""
