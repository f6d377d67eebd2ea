"""Real-time LLM usage and cost profiling service."""
