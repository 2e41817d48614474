"""
WSGI / Flask CLI entry point.

Usage:
    flask --app wsgi run
    flask --app wsgi db upgrade
    flask --app wsgi rebuild-closure --project-id 1
"""

from reqgraph import create_app

app = create_app()
