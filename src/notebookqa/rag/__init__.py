"""Question answering — providers, prompts, answer cache, feedback and the tier orchestrator."""
