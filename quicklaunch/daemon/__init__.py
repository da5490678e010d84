"""Launcher daemon: history cache, scoring, launch dispatch and HTTP API."""
