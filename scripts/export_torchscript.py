# =============================================================================
# Pasture Biomass Estimator - TorchScript Export Script
# =============================================================================
# One-time utility that loads a training checkpoint (a state dict for the
# fixed biomass regressor) and saves it as a TorchScript whole-model
# artifact. The server prefers this artifact at startup because it loads
# without needing the architecture definition.
#
# Usage:
#   python3 scripts/export_torchscript.py models/fold0_best.pth models/biomass_ts.pt
#
# Output:
#   <output>  — TorchScript module mapping (1, 3, 224, 224) → (1, 5)
# =============================================================================

import argparse
import logging
import os
import sys
import time

import torch

from local_model.architecture import load_model_handle
from local_model.preprocessing import INPUT_SIZE

logger = logging.getLogger(__name__)


def export_torchscript(checkpoint_path: str, output_path: str) -> str:
    """
    Trace the fixed architecture with the checkpoint weights and save it.

    Loading goes through load_model_handle(), so a checkpoint that is
    already TorchScript is re-saved unchanged.

    Args:
        checkpoint_path: Path to the training checkpoint (.pth).
        output_path:     Destination of the TorchScript artifact.

    Returns:
        The output path.
    """
    t0 = time.time()
    handle = load_model_handle(checkpoint_path, device="cpu")
    print(f"Loaded {checkpoint_path} as {handle.source} in {time.time() - t0:.1f}s")

    if handle.source == "torchscript":
        scripted = handle.module
    else:
        example = torch.zeros(1, 3, INPUT_SIZE, INPUT_SIZE)
        with torch.no_grad():
            scripted = torch.jit.trace(handle.module, example)

    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    torch.jit.save(scripted, output_path)
    print(
        f"Saved TorchScript artifact: {output_path} "
        f"({os.path.getsize(output_path) / 1024 / 1024:.1f} MB)"
    )
    return output_path


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Export the biomass regressor checkpoint as TorchScript",
    )
    parser.add_argument("checkpoint", help="Path to the state-dict checkpoint")
    parser.add_argument("output", help="Path of the TorchScript artifact to write")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    export_torchscript(args.checkpoint, args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
