"""Query classification, prompts and strategy orchestration."""
