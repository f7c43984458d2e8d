"""Agent runner: CLI invocation, queue processors and background jobs."""
