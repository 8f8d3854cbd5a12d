"""Small shared helpers."""

from cosa.utils.aio import maybe_await

__all__ = ["maybe_await"]
