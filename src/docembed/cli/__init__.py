"""docembed command-line interface."""
