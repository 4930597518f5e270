#!/usr/bin/env python3
import argparse
import logging
import sys

from livestream.config import load_config, setup_logging
from livestream.errors import ConfigurationError
from web.app import create_app


def main(argv=None):
    """Run the livestream hub on Flask's threaded development server."""
    parser = argparse.ArgumentParser(description="Single-viewer webcam livestream hub")
    parser.add_argument("-c", "--config", help="path to a YAML config file (default: config/config.yaml)")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config)
    logging.info("Using port: %d", config.port)

    app = create_app(config=config)
    try:
        # One thread per viewer connection
        app.run(host=config.host, port=config.port, debug=False, threaded=True)
    except KeyboardInterrupt:
        logging.info("Shutdown initiated...")
    finally:
        app.livestream.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
