#!/usr/bin/env python3
"""
AssessMatch Web App Startup Script
Run this to start the recommendation API
"""

import sys
import threading

from assessmatch.config import get_config_manager
from assessmatch.webapp import app, get_engine, progress_callback, socketio


def preload_catalog():
    """Load the catalog in the background; early requests wait for it."""
    engine = get_engine()

    def load():
        try:
            engine.initialize(progress=progress_callback)
        except Exception as e:
            print(f"❌ Catalog load failed: {e}")

    threading.Thread(target=load, daemon=True).start()


def main():
    config = get_config_manager()
    host = config.get('web', 'host')
    port = config.get('web', 'port')

    print("🧭 Starting AssessMatch Web Application...")
    print("📊 API will be available at:")
    print(f"   • http://localhost:{port}")
    print(f"   • http://{host}:{port}")
    print("\n✨ Endpoints:")
    print("   • POST /api/recommend  - ranked assessments for a job description")
    print("   • GET  /api/status     - engine and backend status")
    print("   • POST /api/reload     - rebuild the assessment store")
    print("\n💡 Press Ctrl+C to stop the server")
    print("=" * 60)

    try:
        preload_catalog()
        socketio.run(
            app,
            debug=False,
            host=host,
            port=port,
            allow_unsafe_werkzeug=True
        )

    except KeyboardInterrupt:
        print("\n👋 AssessMatch Web App stopped. Goodbye!")
        sys.exit(0)
    except Exception as e:
        print(f"\n❌ Error starting web app: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
