"""Terminal entrypoints for storyteller."""
