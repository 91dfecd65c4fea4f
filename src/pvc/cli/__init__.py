"""Command-line interface configuration and utilities."""

from pvc.cli.config import (
    RBVConfig,
    RLConfig,
    SimulateConfig,
    Make4DConfig,
    configure_logging,
    configure_matplotlib,
    parse_rbv_args,
    parse_rl_args,
    parse_simulate_args,
    parse_make4d_args,
)

__all__ = [
    "RBVConfig",
    "RLConfig",
    "SimulateConfig",
    "Make4DConfig",
    "configure_logging",
    "configure_matplotlib",
    "parse_rbv_args",
    "parse_rl_args",
    "parse_simulate_args",
    "parse_make4d_args",
]
