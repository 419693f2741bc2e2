# =============================================================================
# Pasture Biomass Estimator - Server Entry Point
# =============================================================================
# CLI entry point for starting the FastAPI server hosting the hybrid
# pipeline: local PyTorch regressor + remote vision-language model.
# =============================================================================

import argparse
import logging

import uvicorn

from config import get_config


def main():
    """Parse CLI arguments, apply overrides, and start the server."""
    parser = argparse.ArgumentParser(
        description="Pasture Biomass Estimator — Server (local model + remote vision)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--host", type=str, default=None, help="Server bind address")
    parser.add_argument("--port", type=int, default=None, help="Server bind port")
    parser.add_argument("--model", type=str, default=None, help="Path to the local model artifact")
    parser.add_argument("--vision-model", type=str, default=None, help="Remote vision model identifier")
    args = parser.parse_args()

    config = get_config()

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.host is not None:
        config.server_host = args.host
    if args.port is not None:
        config.server_port = args.port
    if args.model is not None:
        config.model_path = args.model
    if args.vision_model is not None:
        config.vision_model = args.vision_model

    config.server_url = f"http://{config.server_host}:{config.server_port}"

    print("\n" + "=" * 60)
    print("  Pasture Biomass Estimator — Server")
    print("=" * 60)
    print(f"  Local model  : {config.model_path}")
    print(f"  Device       : {config.device}")
    print(f"  Vision model : {config.vision_model}")
    print(f"  Endpoint     : {config.vision_endpoint}")
    print(f"  API keys     : {len(config.api_keys)}")
    print(f"  Listening    : {config.server_url}")
    print("=" * 60 + "\n")

    uvicorn.run(
        "server.app:app",
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
