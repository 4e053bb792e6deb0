"""
API Layer for the Face Recognition Door Lock

This package provides the FastAPI-based API layer that exposes:
- REST endpoints to activate, deactivate and monitor the lock
- WebSocket endpoint for enrolling new users
- REST endpoints for enrolled users, access history and health checks
"""
