#!/usr/bin/env python3
"""CLI entry points for partial volume correction and simulation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from pvc.algorithms.rbv import RBVCorrector
from pvc.algorithms.richardson_lucy import RichardsonLucy
from pvc.algorithms.simulate import add_noise, simulate
from pvc.callbacks import NRMSECallback, SaveIterationCallback
from pvc.cli.config import (
    Make4DConfig,
    RBVConfig,
    RLConfig,
    SimulateConfig,
    configure_logging,
    configure_matplotlib,
    parse_make4d_args,
    parse_rbv_args,
    parse_rl_args,
    parse_simulate_args,
)
from pvc.operators.blurring import create_gaussian_blur
from pvc.psf import fwhm_to_variance
from pvc.utils import load_image, load_mask_stack, load_nifti, save_image
from pvc.volume import labels_to_mask_stack

LOGGER = logging.getLogger(__name__)


def save_objective(values: Iterable[float], output: Path, title: str) -> None:
    """Save objective values as both CSV and plot.

    Parameters
    ----------
    values : Iterable[float]
        Objective values per iteration
    output : Path
        Output path for the plot (CSV will have same name with .csv extension)
    title : str
        Plot title
    """
    import matplotlib.pyplot as plt

    values_list = list(values)
    output.parent.mkdir(parents=True, exist_ok=True)

    csv_path = output.with_suffix('.csv')
    with open(csv_path, 'w') as f:
        f.write("iteration,objective\n")
        for i, val in enumerate(values_list, start=1):
            f.write(f"{i},{val:.8e}\n")

    plt.figure()
    plt.plot(range(1, len(values_list) + 1), values_list)
    plt.xlabel("Iteration")
    plt.ylabel("Objective")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(output)
    plt.close()


def run_rl(config: RLConfig) -> None:
    observed, reference = load_nifti(config.input_file)
    variance = fwhm_to_variance(config.fwhm)
    LOGGER.debug("PSF variance (mm^2): %s", variance.tolist())
    blur = create_gaussian_blur(variance, observed.spacing, config.backend)

    callbacks: List[Callable] = []
    if config.ground_truth_file is not None:
        nrmse_path = config.output_file.parent / "rl_nrmse.csv"
        callbacks.append(
            NRMSECallback(
                ground_truth=load_image(config.ground_truth_file),
                output_file=nrmse_path,
                verbose=config.debug,
            )
        )
    if config.save_interval > 0:
        callbacks.append(
            SaveIterationCallback(
                output_dir=config.iteration_directory(),
                interval=config.save_interval,
                prefix="rl_iter",
                save_first_n=config.save_first_n,
                reference=reference,
            )
        )

    rl = RichardsonLucy(
        observed,
        blur,
        stopping_threshold=config.stop,
    )
    rl.run(iterations=config.iterations, callbacks=callbacks, verbose=int(config.debug))
    save_image(rl.get_output(), config.output_file, reference=reference)
    LOGGER.info("RL: wrote %s after %d iteration(s)", config.output_file, rl.iteration)

    if config.plot_objective is not None:
        configure_matplotlib(show_plots=False)
        save_objective(rl.loss, config.plot_objective, "RL Objective")


def run_rbv(config: RBVConfig) -> None:
    observed, reference = load_nifti(config.input_file)
    masks = load_mask_stack(config.mask_file)
    LOGGER.info("RBV: %d region(s) in %s", masks.n_regions, config.mask_file)
    corrector = RBVCorrector(
        fwhm_to_variance(config.fwhm),
        backend=config.backend,
        region_estimator=config.region_estimator,
    )
    corrected = corrector.correct(observed, masks)
    save_image(corrected, config.output_file, reference=reference)
    LOGGER.info("RBV: wrote %s", config.output_file)


def run_simulate(config: SimulateConfig) -> None:
    ground_truth, reference = load_nifti(config.input_file)
    blurred = simulate(ground_truth, fwhm_to_variance(config.fwhm), backend=config.backend)
    if config.noise is not None:
        blurred = add_noise(
            blurred,
            model=config.noise,
            poisson_scale=config.poisson_scale,
            gaussian_sigma=config.gaussian_sigma,
            seed=config.seed,
        )
    save_image(blurred, config.output_file, reference=reference)
    LOGGER.info("Simulation: wrote %s", config.output_file)


def run_make4d(config: Make4DConfig) -> None:
    labels, reference = load_nifti(config.label_file)
    masks = labels_to_mask_stack(labels.as_array(), labels.spacing, include_zero=config.include_zero)
    save_image(masks, config.output_file, reference=reference)
    LOGGER.info("Wrote %d region mask(s) to %s", masks.n_regions, config.output_file)


def _execute(parse, run, argv: Optional[Sequence[str]]) -> int:
    config = parse(argv)
    configure_logging(config.debug)
    for line in config.summary_lines():
        LOGGER.debug(line)
    try:
        run(config)
    except (ValueError, OSError, RuntimeError) as err:
        LOGGER.error("[Error]\t%s", err)
        return 1
    return 0


def rl_main(argv=None) -> int:
    return _execute(parse_rl_args, run_rl, argv)


def rbv_main(argv=None) -> int:
    return _execute(parse_rbv_args, run_rbv, argv)


def simulate_main(argv=None) -> int:
    return _execute(parse_simulate_args, run_simulate, argv)


def make4d_main(argv=None) -> int:
    return _execute(parse_make4d_args, run_make4d, argv)


if __name__ == "__main__":
    raise SystemExit(rl_main())
