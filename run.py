#!/usr/bin/env python3
"""
Color Highlighter - Main Entry Point

Run this script to start the web application.

Usage:
    python run.py [--host HOST] [--port PORT] [--debug]

Example:
    python run.py --host 0.0.0.0 --port 5000 --debug
"""

import argparse
import logging
from colorhighlight import create_app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def main():
    parser = argparse.ArgumentParser(description='Texture Color Highlighter')
    parser.add_argument('--host', default='0.0.0.0', help='Host to bind to (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=5000, help='Port to bind to (default: 5000)')
    parser.add_argument('--timeout', type=float, default=30.0,
                        help='Seconds to wait for an analysis (default: 30)')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    args = parser.parse_args()

    app = create_app({'HIGHLIGHT_TIMEOUT': args.timeout})

    logging.getLogger(__name__).info(f"Color highlighter starting at http://{args.host}:{args.port}")

    # The reloader would start a second analysis worker in the child process
    app.run(host=args.host, port=args.port, debug=args.debug, use_reloader=False)


if __name__ == '__main__':
    main()
