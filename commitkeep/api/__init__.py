"""commitkeep HTTP API layer.

This package provides the Falcon Asynchronous Server Gateway Interface
(ASGI) application that serves stored commit history and ingestion lag.

Usage
-----
Create and run the application::

    from commitkeep.api import create_app

    app = create_app()              # health-only mode
    app = create_app(dependencies)  # full mode with query endpoints

Public API
----------
create_app
    Application factory that configures the Falcon ASGI app with health
    endpoints and, when a session factory is provided, the read-only
    commit and lag endpoints.
"""

from commitkeep.api.app import create_app

__all__ = ["create_app"]
