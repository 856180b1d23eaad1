# Middleware package init
"""
SmartNotes Backend — Middleware Package
=========================================

Middleware Chain (order matters!):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Rate Limit first: reject abusive clients before any processing
    2. Request ID: correlation ID for every log line and error body
    3. Logging: one access line per request, with status and duration

WebSocket connections bypass this chain (BaseHTTPMiddleware handles HTTP only).
"""
