from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

from pvc.algorithms.rbv import REGION_ESTIMATORS
from pvc.algorithms.richardson_lucy import DEFAULT_ITERATIONS
from pvc.algorithms.simulate import NOISE_MODELS
from pvc.operators.blurring import BACKENDS

LOG_LEVEL_ENV = "PVC_LOG_LEVEL"
LOG_FORMAT = "%(levelname)s:%(name)s:%(message)s"


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected an integer, got {value!r}.")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"Expected a positive integer, got {number}.")
    return number


def _non_negative_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected a number, got {value!r}.")
    if not number >= 0 or number == float("inf"):
        raise argparse.ArgumentTypeError(f"Expected a non-negative number, got {value}.")
    return number


def _tuple3(values: Sequence[float]) -> Tuple[float, float, float]:
    if len(values) != 3:
        raise argparse.ArgumentTypeError("Expected three values for FWHM.")
    return float(values[0]), float(values[1]), float(values[2])


@dataclass
class CommonConfig:
    input_file: Path
    output_file: Path
    fwhm: Tuple[float, float, float]
    backend: str = "auto"
    debug: bool = False

    def summary_lines(self) -> Iterable[str]:
        yield f"  input_file: {self.input_file}"
        yield f"  output_file: {self.output_file}"
        yield f"  fwhm (mm): {self.fwhm}"
        yield f"  backend: {self.backend}"


@dataclass
class RLConfig(CommonConfig):
    iterations: int = DEFAULT_ITERATIONS
    stop: Optional[float] = None
    ground_truth_file: Optional[Path] = None
    save_interval: int = 0
    save_first_n: int = 5
    plot_objective: Optional[Path] = None

    def summary_lines(self) -> Iterable[str]:
        yield "Richardson-Lucy configuration:"
        yield from super().summary_lines()
        yield f"  iterations: {self.iterations}"
        yield f"  stopping threshold: {self.stop} (not enforced)"
        yield f"  ground_truth_file: {self.ground_truth_file}"
        yield f"  save_interval: {self.save_interval}"

    def iteration_directory(self) -> Path:
        name = self.output_file.name
        for suffix in (".nii.gz", ".nii"):
            if name.endswith(suffix):
                name = name[: -len(suffix)]
                break
        return self.output_file.parent / f"{name}_iterations"


@dataclass
class RBVConfig(CommonConfig):
    mask_file: Path = Path("mask.nii.gz")
    region_estimator: str = "mean"

    def summary_lines(self) -> Iterable[str]:
        yield "RBV configuration:"
        yield from super().summary_lines()
        yield f"  mask_file: {self.mask_file}"
        yield f"  region_estimator: {self.region_estimator}"


@dataclass
class SimulateConfig(CommonConfig):
    noise: Optional[str] = None
    poisson_scale: float = 1e5
    gaussian_sigma: Optional[float] = None
    seed: Optional[int] = None

    def summary_lines(self) -> Iterable[str]:
        yield "PVE simulation configuration:"
        yield from super().summary_lines()
        yield f"  noise: {self.noise}"
        if self.noise is not None:
            yield f"  seed: {self.seed}"


@dataclass
class Make4DConfig:
    label_file: Path
    output_file: Path
    include_zero: bool = False
    debug: bool = False

    def summary_lines(self) -> Iterable[str]:
        yield "Label to 4-D mask configuration:"
        yield f"  label_file: {self.label_file}"
        yield f"  output_file: {self.output_file}"
        yield f"  include_zero: {self.include_zero}"


def configure_logging(debug: bool = False) -> None:
    """Attach a stream handler to the ``pvc`` logger; level from --debug or PVC_LOG_LEVEL."""
    logger = logging.getLogger("pvc")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    if debug:
        logger.setLevel(logging.DEBUG)
        return
    level_name = os.environ.get(LOG_LEVEL_ENV)
    if level_name is None:
        logger.setLevel(logging.INFO)
    else:
        try:
            logger.setLevel(getattr(logging, level_name.upper()))
        except AttributeError:
            logger.setLevel(logging.INFO)


def configure_matplotlib(show_plots: bool = False) -> None:
    if not show_plots:
        import matplotlib

        matplotlib.use("Agg")


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-x", "--fwhm-x", dest="fwhm_x", type=_non_negative_float, metavar="X",
                        help="The full-width at half maximum in mm along x-axis")
    parser.add_argument("-y", "--fwhm-y", dest="fwhm_y", type=_non_negative_float, metavar="Y",
                        help="The full-width at half maximum in mm along y-axis")
    parser.add_argument("-z", "--fwhm-z", dest="fwhm_z", type=_non_negative_float, metavar="Z",
                        help="The full-width at half maximum in mm along z-axis")
    parser.add_argument("--fwhm", type=_non_negative_float, nargs=3, metavar=("FX", "FY", "FZ"),
                        help="FWHM in mm along x, y and z (alternative to -x/-y/-z)")
    parser.add_argument("--backend", choices=BACKENDS, default="auto")
    parser.add_argument("-d", "--debug", action="store_true", help="Prints debug information")


def _resolve_fwhm(parser: argparse.ArgumentParser, args: argparse.Namespace) -> Tuple[float, float, float]:
    per_axis = (args.fwhm_x, args.fwhm_y, args.fwhm_z)
    if args.fwhm is not None:
        if any(v is not None for v in per_axis):
            parser.error("use either --fwhm or -x/-y/-z, not both")
        return _tuple3(args.fwhm)
    if any(v is None for v in per_axis):
        parser.error("the FWHM along x, y and z is required (-x X -y Y -z Z)")
    return _tuple3(per_axis)


def parse_rl_args(argv: Optional[Sequence[str]] = None) -> RLConfig:
    parser = argparse.ArgumentParser(
        prog="pvc-rl", description="Performs Richardson-Lucy (RL) partial volume correction"
    )
    parser.add_argument("petfile", type=Path, help="PET filename")
    parser.add_argument("outputfile", type=Path, help="output filename")
    _add_common_arguments(parser)
    parser.add_argument("-i", "--iter", dest="iterations", type=_positive_int,
                        default=DEFAULT_ITERATIONS, help="Number of iterations")
    parser.add_argument("-s", "--stop", type=float, default=None,
                        help="Stopping criterion (recorded, not enforced)")
    parser.add_argument("--ground-truth", type=Path, default=None,
                        help="Ground truth image for NRMSE calculation (optional)")
    parser.add_argument("--save-interval", type=int, default=0,
                        help="Save the estimate every N iterations (0 = disabled)")
    parser.add_argument("--save-first-n", type=int, default=5,
                        help="Save first N iterations before using interval")
    parser.add_argument("--plot-objective", type=Path, default=None,
                        help="Save a plot (and CSV) of the objective per iteration")
    args = parser.parse_args(argv)

    return RLConfig(
        input_file=args.petfile,
        output_file=args.outputfile,
        fwhm=_resolve_fwhm(parser, args),
        backend=args.backend,
        debug=args.debug,
        iterations=args.iterations,
        stop=args.stop,
        ground_truth_file=args.ground_truth,
        save_interval=args.save_interval,
        save_first_n=args.save_first_n,
        plot_objective=args.plot_objective,
    )


def parse_rbv_args(argv: Optional[Sequence[str]] = None) -> RBVConfig:
    parser = argparse.ArgumentParser(
        prog="pvc-rbv",
        description="Performs Region-based voxel-wise (RBV) partial volume correction",
    )
    parser.add_argument("petfile", type=Path, help="PET filename")
    parser.add_argument("maskfile", type=Path, help="mask filename (4-D, one region per volume)")
    parser.add_argument("outputfile", type=Path, help="output filename")
    _add_common_arguments(parser)
    parser.add_argument("--region-estimator", choices=REGION_ESTIMATORS, default="mean",
                        help="Regional activity estimate: masked mean (default) or GTM-corrected mean; "
                             "only gtm recovers piecewise-constant regions exactly")
    args = parser.parse_args(argv)

    return RBVConfig(
        input_file=args.petfile,
        output_file=args.outputfile,
        fwhm=_resolve_fwhm(parser, args),
        backend=args.backend,
        debug=args.debug,
        mask_file=args.maskfile,
        region_estimator=args.region_estimator,
    )


def parse_simulate_args(argv: Optional[Sequence[str]] = None) -> SimulateConfig:
    parser = argparse.ArgumentParser(
        prog="pvc-simulate", description="Performs PV simulation by simple blurring"
    )
    parser.add_argument("petfile", type=Path, help="PET filename")
    parser.add_argument("outputfile", type=Path, help="output filename")
    _add_common_arguments(parser)
    parser.add_argument("--noise", choices=NOISE_MODELS, default=None,
                        help="Add noise to the blurred image")
    parser.add_argument("--poisson-scale", type=float, default=1e5,
                        help="Counts per unit intensity for Poisson noise")
    parser.add_argument("--gaussian-sigma", type=_non_negative_float, default=None,
                        help="Absolute sigma for Gaussian noise (default: 5%% of max)")
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args(argv)

    return SimulateConfig(
        input_file=args.petfile,
        output_file=args.outputfile,
        fwhm=_resolve_fwhm(parser, args),
        backend=args.backend,
        debug=args.debug,
        noise=args.noise,
        poisson_scale=args.poisson_scale,
        gaussian_sigma=args.gaussian_sigma,
        seed=args.seed,
    )


def parse_make4d_args(argv: Optional[Sequence[str]] = None) -> Make4DConfig:
    parser = argparse.ArgumentParser(
        prog="pvc-make4d",
        description="Converts a 3-D label image into a 4-D region mask stack",
    )
    parser.add_argument("labelfile", type=Path, help="label image filename")
    parser.add_argument("outputfile", type=Path, help="output filename")
    parser.add_argument("--include-zero", action="store_true",
                        help="Keep label 0 as a region instead of treating it as background")
    parser.add_argument("-d", "--debug", action="store_true", help="Prints debug information")
    args = parser.parse_args(argv)

    return Make4DConfig(
        label_file=args.labelfile,
        output_file=args.outputfile,
        include_zero=args.include_zero,
        debug=args.debug,
    )
