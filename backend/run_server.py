#!/usr/bin/env python3
"""
Launch script for the Drone Flight Log Pipeline backend.

Usage:
    python run_server.py [data_folder] [--port PORT] [--host HOST]

Examples:
    python run_server.py                    # Preload ./data/logs if present
    python run_server.py /path/to/records   # Preload a custom folder
    python run_server.py --port 5000        # Run on port 5000
"""

import argparse
import os
import shutil
import sys
from pathlib import Path

# Add flightlog to path
sys.path.insert(0, str(Path(__file__).parent))


def main():
    parser = argparse.ArgumentParser(description="Drone Flight Log Pipeline Server")
    parser.add_argument(
        "data_folder",
        nargs="?",
        default="./data/logs",
        help="Folder of DJI flight records to preload (default: ./data/logs)"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8000,
        help="Port to run server on (default: 8000)"
    )
    parser.add_argument(
        "--host", "-H",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1, use 0.0.0.0 for all interfaces)"
    )
    parser.add_argument(
        "--decoder",
        default=None,
        help="Path to the dji-log decoder binary (overrides DJI_LOG_PARSER_PATH)"
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Run in debug mode"
    )

    args = parser.parse_args()

    data_folder = Path(args.data_folder)
    if args.decoder:
        os.environ["DJI_LOG_PARSER_PATH"] = args.decoder
    decoder = os.getenv("DJI_LOG_PARSER_PATH") or shutil.which("dji-log")

    print("Drone Flight Log Pipeline")
    print("=" * 40)
    print(f"Data folder: {data_folder.absolute()}")
    print(f"Decoder: {decoder or 'not configured (heuristic fallback)'}")
    print(f"Server: http://{args.host}:{args.port}")
    print("=" * 40)

    if data_folder.exists():
        os.environ["FLIGHTLOG_DATA_FOLDER"] = str(data_folder)
    else:
        print(f"\nWarning: Data folder does not exist: {data_folder}")
        print("Upload records via POST /flight-logs/parse")

    print("\nAPI Endpoints:")
    print("  GET  /                             - Health check")
    print("  GET  /health                       - Detailed health")
    print("  POST /flight-logs/parse?filename=  - Parse an uploaded record")
    print("  GET  /flight-logs                  - List flight logs")
    print("  GET  /flight-logs/{id}             - Flight log statistics")
    print("  GET  /flight-logs/{id}/data-points - Telemetry samples")
    print("  GET  /batteries                    - Battery statistics")
    print("\nStarting server...")

    import uvicorn

    uvicorn.run(
        "flightlog.main:app",
        host=args.host,
        port=args.port,
        reload=args.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
