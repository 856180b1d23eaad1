# Routes package init
"""
SmartNotes Backend — API Routes Package
=========================================

Route Inventory:
    - auth.py:           /api/auth/signup, /signin, /signout
    - notes.py:          /api/notes (CRUD, recent, search, stats, insights, share),
                         /api/shared/{share_id}
    - search.py:         /api/search, /api/search/recent, /api/search/suggestions
    - voice.py:          /api/voice/transcribe, /summary, /keywords, /actions, /process
    - users.py:          /api/users/me (profile, stats, settings, account deletion)
    - collaboration.py:  /api/collaboration/... (sharing, permissions, live edits, WebSocket)
    - storage.py:        /api/storage/... (uploads, export, import, sync), /api/files/...
    - health.py:         /health

Routes stay thin: parse the request, call one service, shape the response.
"""
