"""Domain layer - Pure business logic with no external dependencies."""
