"""Core components: scheduler and lifecycle management."""
