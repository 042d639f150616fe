"""Backend package for the Ethical Ecosystem multiplayer game.

This package contains the shared document store, round lifecycle,
ecosystem aggregation, presence tracking, and the REST/WebSocket surface.
"""
