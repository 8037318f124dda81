"""librarydesk - Services Package

This package contains the collaborators used by the circulation core:
- Notification emitter and notification management
- Activity (audit trail) logger
- Penalties
- Book reviews and favorites
- User directory
"""
