"""chatbridge: OpenAI-compatible gateway for cumulative-text conversational backends."""
