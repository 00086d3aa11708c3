#!/usr/bin/env python3
"""
ReviewDesk - Application Entry Point
`python run.py` for local development; gunicorn imports `app` from here
"""
import os

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from reviewdesk import create_app, __version__

app = create_app()


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_ENV', 'development') == 'development'
    scheduler = 'on' if os.environ.get('ENABLE_SCHEDULER') == '1' else 'off (set ENABLE_SCHEDULER=1)'

    print(f"""
  ReviewDesk v{__version__}

  API:       http://localhost:{port}/api
  Health:    http://localhost:{port}/health
  Scheduler: {scheduler}
    """)

    app.run(host=os.environ.get('HOST', '0.0.0.0'), port=port, debug=debug)
