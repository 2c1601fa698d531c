#portal_backend/wsgi.py
"""
wsgi.py – Dance Portal Backend Entry Point
────────────────────────────────────────────
Served by Gunicorn in production:
    gunicorn portal_backend.wsgi:app

Running this file directly starts the Flask dev
server, handy for poking at the JSON API locally.
────────────────────────────────────────────
"""

import os
from portal_backend.app import create_app

app = create_app()

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    app.logger.info(f"🚀 Dance portal API listening on :{port}")
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG") == "1")
