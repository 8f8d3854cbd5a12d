"""Command-line interface for inspecting a cosa database."""
