"""Core types and exceptions shared across the span labeling pipeline."""
