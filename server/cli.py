# =============================================================================
# Pasture Biomass Estimator - One-shot Analysis CLI
# =============================================================================
# Runs a single image file through the hybrid pipeline and prints the
# result, either as a short summary or as the full AnalysisResult JSON.
# =============================================================================

import argparse
import logging
import sys

from config import get_config
from server.orchestrator import AnalysisOrchestrator
from shared.errors import BiomassAnalysisError
from shared.schemas import AnalysisResult

logger = logging.getLogger(__name__)


def format_summary(result: AnalysisResult) -> str:
    """Render the human-readable summary printed by default."""
    components = result.components
    lines = [
        f"{result.title or 'Pasture Biomass Analysis'} ({result.id})",
        f"  Dry green  : {components.dry_green_g:.2f} g",
        f"  Dry clover : {components.dry_clover_g:.2f} g",
        f"  Dry dead   : {components.dry_dead_g:.2f} g",
        f"  Dry total  : {components.dry_total_g:.2f} g",
        f"  GDM        : {components.gdm_g:.2f} g",
        f"  Confidence : {result.confidence_score:.0%}",
        f"  Local hint : {'yes' if result.local_hint_used else 'no'}",
        f"  Attempts   : {result.attempts}",
    ]
    if result.description:
        lines += ["", result.description]
    if result.recommendations:
        lines += ["", f"Recommendations: {result.recommendations}"]
    return "\n".join(lines)


def main(argv=None) -> int:
    """CLI entry point: analyze one image file."""
    parser = argparse.ArgumentParser(
        description="Pasture Biomass Estimator — analyze a single image",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("image", help="Path to a PNG, JPEG or GIF pasture photograph")
    parser.add_argument("--model", type=str, default=None, help="Path to the local model artifact")
    parser.add_argument(
        "--json", action="store_true",
        help="Print the full result as JSON (the base64 image is omitted)",
    )
    args = parser.parse_args(argv)

    config = get_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if args.model is not None:
        config.model_path = args.model

    try:
        with open(args.image, "rb") as f:
            image_bytes = f.read()
    except OSError as exc:
        logger.error("Cannot read %s: %s", args.image, exc)
        return 2

    orchestrator = AnalysisOrchestrator.from_config(config)
    try:
        result = orchestrator.run(image_bytes)
    except BiomassAnalysisError as exc:
        logger.error(
            "Analysis failed (%s, attempts=%s): %s",
            type(exc).__name__, exc.attempts, exc,
        )
        return 1

    if args.json:
        print(result.model_dump_json(indent=2, exclude={"image_base64"}))
    else:
        print(format_summary(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
