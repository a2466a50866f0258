"""
Command-line entry point.

    ar-workflow --run-dir runs/sim simulate --n-obs 500 --beta 0.3 0 0 0 0 0.6
    ar-workflow --run-dir runs/sim fit
    ar-workflow --run-dir runs/sim diagnose
    ar-workflow --run-dir runs/sim forecast --horizon 12
    ar-workflow --run-dir runs/sim recover

    ar-workflow --run-dir runs/real fit --series data.csv --mask-block 100 10

Exit codes: 0 success, 1 prior stage output missing or diagnostics gate
not met, 2 fatal precondition error.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import polars as pl

from ar_workflow import workflow
from ar_workflow.config import WorkflowConfig, load_config
from ar_workflow.errors import WorkflowError
from ar_workflow.predictive.posterior import PosteriorPredictive

logger = logging.getLogger("ar_workflow")

EXIT_OK = 0
EXIT_STAGE = 1
EXIT_FATAL = 2


def _cmd_simulate(args: argparse.Namespace, config: WorkflowConfig) -> int:
    if len(args.beta) != config.lag_order:
        raise WorkflowError(
            f"--beta needs {config.lag_order} values (lag_order). Got {len(args.beta)}"
        )
    series, truth = workflow.simulate_stage(
        config,
        {"alpha": args.alpha, "beta": args.beta, "sigma": args.sigma},
        n_obs=args.n_obs,
        missing_fraction=args.missing_fraction,
    )
    workflow.save_series(series, args.run_dir)
    workflow.save_truth(truth, args.run_dir)
    logger.info(f"Wrote {series} to {args.run_dir}")
    return EXIT_OK


def _cmd_fit(args: argparse.Namespace, config: WorkflowConfig) -> int:
    if args.series is not None:
        series, time_index = workflow.read_series_csv(
            args.series, args.time_col, args.value_col, args.null_values
        )
        if args.mask_block is not None:
            start, length = args.mask_block
            series = series.with_missing(range(start, start + length))
        workflow.save_series(series, args.run_dir, time_index)
    else:
        series = workflow.load_series(args.run_dir)

    fit = workflow.fit_stage(config, series)
    workflow.save_fit(fit, args.run_dir)
    return EXIT_OK if fit.complete else EXIT_STAGE


def _cmd_diagnose(args: argparse.Namespace, config: WorkflowConfig) -> int:
    fit = workflow.load_fit(args.run_dir)
    report, passed = workflow.diagnose_stage(config, fit)
    workflow.save_diagnostics(report, passed, args.run_dir)
    print(report.to_frame().to_string())
    return EXIT_OK if passed else EXIT_STAGE


def _load_gated(args: argparse.Namespace):
    report, passed = workflow.load_diagnostics(args.run_dir)
    if not passed and not args.allow_unreliable:
        logger.error("Diagnostics gate not met; pass --allow-unreliable to continue anyway")
        return None
    return report


def _cmd_forecast(args: argparse.Namespace, config: WorkflowConfig) -> int:
    fit = workflow.load_fit(args.run_dir)
    report = _load_gated(args)
    if report is None:
        return EXIT_STAGE
    in_sample, ahead = workflow.forecast_stage(config, fit, report, horizon=args.horizon)
    path = workflow.save_forecast(in_sample, ahead, args.run_dir)
    logger.info(f"Wrote forecast to {path}")
    return EXIT_OK


def _cmd_recover(args: argparse.Namespace, config: WorkflowConfig) -> int:
    truth = workflow.load_truth(args.run_dir)
    fit = workflow.load_fit(args.run_dir)
    report = _load_gated(args)
    if report is None:
        return EXIT_STAGE
    result = PosteriorPredictive.recovery_check(
        fit, truth, config.interval_width, report=report, gate=config.gate
    )
    print(json.dumps(result.to_dict(), indent=2))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="ar-workflow", description=__doc__.split("\n\n")[0])
    ap.add_argument("--config", type=Path, default=None, help="YAML workflow configuration.")
    ap.add_argument("--run-dir", type=Path, default=Path("runs/default"))
    ap.add_argument("--log-level", default="INFO")
    sub = ap.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Simulate a series with known parameters.")
    sim.add_argument("--n-obs", type=int, default=500)
    sim.add_argument("--alpha", type=float, default=0.0)
    sim.add_argument("--beta", type=float, nargs="+", default=[0.3, 0.0, 0.0, 0.0, 0.0, 0.6])
    sim.add_argument("--sigma", type=float, default=1.0)
    sim.add_argument("--missing-fraction", type=float, default=0.0)
    sim.set_defaults(func=_cmd_simulate)

    fit = sub.add_parser("fit", help="Fit to the simulated series or to --series.")
    fit.add_argument("--series", type=Path, default=None, help="CSV of (timestamp, value).")
    fit.add_argument("--time-col", default="timestamp")
    fit.add_argument("--value-col", default="value")
    fit.add_argument(
        "--null-values",
        nargs="*",
        default=list(workflow.DEFAULT_NULL_VALUES),
        help="CSV cells read as missing observations.",
    )
    fit.add_argument(
        "--mask-block",
        type=int,
        nargs=2,
        metavar=("START", "LENGTH"),
        default=None,
        help="Additionally mark a contiguous block missing.",
    )
    fit.set_defaults(func=_cmd_fit)

    diag = sub.add_parser("diagnose", help="Convergence diagnostics and gate.")
    diag.set_defaults(func=_cmd_diagnose)

    fc = sub.add_parser("forecast", help="Posterior predictive quantiles.")
    fc.add_argument("--horizon", type=int, default=0)
    fc.add_argument("--allow-unreliable", action="store_true")
    fc.set_defaults(func=_cmd_forecast)

    rec = sub.add_parser("recover", help="Check recovery of simulation parameters.")
    rec.add_argument("--allow-unreliable", action="store_true")
    rec.set_defaults(func=_cmd_recover)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(args.config) if args.config else WorkflowConfig()
        return args.func(args, config)
    except workflow.StageInputMissing as e:
        logger.error(str(e))
        return EXIT_STAGE
    except (WorkflowError, ValueError, pl.exceptions.PolarsError, OSError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
