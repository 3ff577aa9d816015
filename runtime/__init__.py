"""
Durable Actors — Runtime Infrastructure

Storage backends, configuration, secrets, structured logging and the
error taxonomy shared by the actor core and the API layer.
"""
