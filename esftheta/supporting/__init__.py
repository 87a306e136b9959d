"Adapters for external programs."
