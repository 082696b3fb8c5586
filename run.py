"""Development server entry point.

Usage:
    python run.py

Reads .env first, so DATABASE_URL / STRIPE_* can live there locally.
"""

import os

from dotenv import load_dotenv

load_dotenv()

from settlement import create_app  # noqa: E402

app = create_app(os.environ.get("FLASK_ENV", "development"))

if __name__ == "__main__":
    app.run(debug=app.debug, host="0.0.0.0", port=int(os.environ.get("PORT", 5001)))
