"""Durable Actors — HTTP API, scheduler pumps and the arq worker."""
