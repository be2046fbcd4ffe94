# app/__init__.py
"""
Slot Swapper backend.
Nothing is imported here; ``app.main`` assembles the FastAPI application.
"""
