"""Serial board discovery, sessions, and upload pipelines for block-programming hosts."""
