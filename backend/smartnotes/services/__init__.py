# Services package init
"""
SmartNotes Backend — Services Layer
=====================================

What:  Business logic between routes (HTTP) and the database / AI provider / file storage.
Why:   Routes deal with HTTP; services deal with ownership rules, fallbacks and shaping.
How:   Stateless classes with one module-level instance each. Every method that
       touches the database receives the request's AsyncSession.

Service Inventory:
    - LLMService (abstract): AI provider contract
    - GeminiService: Google Gemini implementation (transcription, text analysis, embeddings)
    - FileService: bucketed upload validation, storage and cleanup
    - AuthService: identities and bearer sessions
    - NoteService: note CRUD, stats, insights, share links
    - SearchService: keyword / semantic search, recent searches, suggestions
    - VoiceService: AI operations with deterministic fallbacks, recording pipeline
    - UserService: profiles, settings, account deletion
    - CollaborationService: collaborators, invitations, realtime edits
    - StorageService: uploads, export / import, offline sync
    - RealtimeHub: in-process change notifications per note
"""
