"""Services: AI orchestration, resilience, caching, pipeline stages and collaborators."""
