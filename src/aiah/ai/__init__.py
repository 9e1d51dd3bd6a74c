"""AI players for AI Against Humanity.

Persona resolution, the response cache, the shared-credential rate limiter,
the Anthropic provider wrapper, and the per-round submission orchestrator.

Optional: if ANTHROPIC_API_KEY is not set and no host supplied a key, AI
players still submit, using canned filler answers.
"""
