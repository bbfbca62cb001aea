"""In-memory model of a document's layer tree."""
