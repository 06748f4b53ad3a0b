"""External judge prompts/parsing and social confirmation."""
