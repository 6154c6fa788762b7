"""Query translation and execution against the document store."""
