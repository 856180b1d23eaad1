"""
SmartNotes Backend — Application Package Initializer
====================================================

Backend for the SmartNotes mobile app: notes, search, voice, user profiles,
collaboration and file storage behind one async HTTP API.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP / WebSocket concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← Orchestration, ownership checks
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │  Database · Gemini · File storage   │  ← External collaborators
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
