"""School data tools: descriptors, handlers, and the dispatch registry."""
