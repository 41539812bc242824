from __future__ import annotations

import argparse
import os

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="adaptive-ui-server", description="Run the adaptive UI FastAPI server"
    )
    parser.add_argument("--host", default=os.environ.get("ADUI_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("ADUI_PORT", "3001")))
    parser.add_argument("--log-level", default=os.environ.get("ADUI_LOG_LEVEL", "info"))
    args = parser.parse_args()

    # The app reads its settings from the environment in its lifespan.
    os.environ["ADUI_PORT"] = str(args.port)
    os.environ["ADUI_LOG_LEVEL"] = str(args.log_level)

    # Registries and delivery caches are in-process, so a single worker only.
    uvicorn.run(
        "adaptive_ui.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        workers=1,
    )


if __name__ == "__main__":
    main()
