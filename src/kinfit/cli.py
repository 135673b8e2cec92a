"""Command-line interface for running the kinematic fit over events."""

from __future__ import annotations

import argparse
import logging

from .harness import FitHarness
from .io import load_events_json, write_diagnostics_table, write_events_json
from .models import FitConfig
from .pid import particle_type_from_name
from .simulate import generate_events
from .smearing import Smearer

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Define and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="kinfit",
        description="Kinematic fit of gamma p -> p + n gamma hypotheses with fit diagnostics.",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--events", help="Input JSON with key 'events'.")
    source.add_argument("--toy", type=int, metavar="N", help="Generate N toy gamma p -> p X(gg) events.")
    parser.add_argument("--toy-meson", default="pi0", help="Meson produced in toy events (pi0, eta, etap).")
    parser.add_argument("--beam-min", type=float, default=300.0, help="Toy beam energy lower edge [MeV].")
    parser.add_argument("--beam-max", type=float, default=1500.0, help="Toy beam energy upper edge [MeV].")
    parser.add_argument("--n-photons", type=int, default=2, help="Number of outgoing photons in the hypothesis.")
    parser.add_argument(
        "--constraint",
        choices=["none", "im", "vertex"],
        default="none",
        help="Additional constraint next to energy-momentum balance.",
    )
    parser.add_argument(
        "--im-mass",
        type=float,
        default=None,
        help="Invariant-mass target [MeV] (default: mass of --toy-meson).",
    )
    parser.add_argument("--max-iterations", type=int, default=50, help="Fitter iteration cap.")
    parser.add_argument("--seed", type=int, default=None, help="Seed of the smearing/toy generator.")
    parser.add_argument("--no-smear", action="store_true", help="Fit MC truth without smearing.")
    parser.add_argument("--dump-events", default=None, help="Write the processed events to this JSON file.")
    parser.add_argument(
        "--out",
        required=True,
        help="Output table file for diagnostics (.parquet, .csv, .pkl).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def setup_logging(verbose: bool = False) -> None:
    """Configure the root logger."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint: load or generate events, run the fit, write diagnostics."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    meson = particle_type_from_name(args.toy_meson)
    config = FitConfig(
        n_photons=args.n_photons,
        include_im_constraint=args.constraint == "im",
        include_vertex_fit=args.constraint == "vertex",
        im_target=meson.mass if args.im_mass is None else args.im_mass,
        max_iterations=args.max_iterations,
        smear=not args.no_smear,
    )
    smearer = Smearer.from_seed(args.seed)

    if args.events:
        events = load_events_json(args.events)
        logger.info("Loaded %d events from %s", len(events), args.events)
    else:
        # the toy source shares the run generator
        events = list(
            generate_events(args.toy, smearer.rng, meson=meson, beam_range=(args.beam_min, args.beam_max))
        )
        logger.info("Generated %d toy %s events", len(events), meson.name)
    if args.dump_events:
        write_events_json(args.dump_events, events)

    harness = FitHarness(config, smearer=smearer)
    harness.process_events(events)
    write_diagnostics_table(args.out, harness.overview, harness.diagnostics)
    logger.info("Wrote diagnostics to %s", args.out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
