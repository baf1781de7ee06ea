"""
Start ServiceForge Builder API Server
Launches the builder API against the configured mini-services backend
"""

import argparse
import os

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Start ServiceForge Builder API Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8080, help="Port to bind to")
    parser.add_argument("--backend-url", help="Mini-services backend (overrides SERVICEFORGE_BACKEND_URL)")
    parser.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"],
                        help="Log level for the server and ServiceForge loggers")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    # settings are read on first use, so overrides must land in the environment first
    if args.backend_url:
        os.environ["SERVICEFORGE_BACKEND_URL"] = args.backend_url
    os.environ["SERVICEFORGE_LOG_LEVEL"] = args.log_level.upper()

    from serviceforge.config import get_settings
    settings = get_settings()

    print(f"""
╔══════════════════════════════════════════════════════════╗
║          ServiceForge Builder API Server                 ║
╠══════════════════════════════════════════════════════════╣
║  Builder API: http://{args.host}:{args.port}
║  API docs:    http://{args.host}:{args.port}/docs
║  Backend:     {settings.backend_url}
║  User id:     {settings.user_id}
║  Drafts:      {settings.drafts_dir}/
╚══════════════════════════════════════════════════════════╝
    """)

    uvicorn.run(
        "api_server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
