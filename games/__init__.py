"""Game kinds, their rule engines and the shared lifecycle.

Rules live in per-kind modules and stay free of store access; `service`
drives the lifecycle against the remote store and the client state.
"""
