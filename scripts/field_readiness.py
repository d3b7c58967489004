#!/usr/bin/env python
"""
Field readiness command line.

Operates on a JSON document directory (one file per document) holding the
fields, weather cache, truth, thresholds, tuning and adjustment log.

Examples:
    python scripts/field_readiness.py --data-dir ./data/readiness status --op planting
    python scripts/field_readiness.py forecast --field f-12 --horizon 72
    python scripts/field_readiness.py calibrate --ref f-12 --target 75 --feel dry
    python scripts/field_readiness.py rebuild --window-days 30
    python scripts/field_readiness.py roll-forward
    python scripts/field_readiness.py cooldown
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import pandas as pd
from dotenv import load_dotenv

from fieldready.core.config import get_config
from fieldready.core.exceptions import ErrorContext, FieldReadinessError, handle_exception
from fieldready.core.types import Feel, OperationKey
from fieldready.pipeline.service import ReadinessService

OP_CHOICES = [op.value for op in OperationKey]


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def cmd_status(service: ReadinessService, args: argparse.Namespace) -> int:
    frame = service.status_frame(args.op)
    if frame.empty:
        print("No fields loaded")
        return 1
    if args.json:
        _print_json(frame.reset_index().to_dict(orient="records"))
    else:
        cols = ["name", "readiness_r", "threshold", "model_class", "storage_final", "smax", "as_of_date_iso"]
        print(frame[cols].round({"storage_final": 3, "smax": 3}).to_string())
    return 0


def cmd_forecast(service: ReadinessService, args: argparse.Namespace) -> int:
    results = service.forecast(args.field, args.op, args.horizon)
    if not results:
        print("No fields loaded")
        return 1
    frame = pd.DataFrame([
        {
            "field_id": r.field_id,
            "status": r.status.value,
            "readiness_now": r.readiness_now,
            "threshold": r.threshold,
            "hours_until_ready": r.hours_until_ready,
            "readiness_at_horizon": r.readiness_at_horizon,
            "message": r.message,
        }
        for r in results
    ]).set_index("field_id")
    if args.json:
        _print_json(frame.reset_index().to_dict(orient="records"))
    else:
        print(frame.to_string())
    return 0


def cmd_calibrate(service: ReadinessService, args: argparse.Namespace) -> int:
    outcome = service.calibrate(args.ref, args.target, args.feel, args.op)
    if not outcome.applied:
        print(f"Adjustment not applied: {outcome.reason.value}")
        return 2
    print(f"Adjustment {outcome.adjustment.id} applied")
    print(f"  readiness {outcome.anchor_readiness} -> {outcome.target_readiness} ({args.feel})")
    print(f"  storageMult: {outcome.storage_mult:.4f}")
    print(f"  fields written: {outcome.written}, failed: {outcome.failed}")
    print(f"  DRY_LOSS_MULT: {outcome.tuning.dry_loss_mult:.4f}, "
          f"RAIN_EFF_MULT: {outcome.tuning.rain_eff_mult:.4f}")
    return 0 if outcome.failed == 0 else 3


def cmd_rebuild(service: ReadinessService, args: argparse.Namespace) -> int:
    outcome = service.rebuild(args.window_days)
    if not outcome.applied:
        print(f"Rebuild not applied: {outcome.reason.value}")
        return 2
    print(f"Rebuilt {outcome.written} fields over {outcome.window_days} days "
          f"({outcome.failed} failed)")
    return 0 if outcome.failed == 0 else 3


def cmd_roll_forward(service: ReadinessService, args: argparse.Namespace) -> int:
    report = service.roll_forward()
    print(f"Rolled forward {report.n_written} fields ({report.n_failed} failed)")
    return 0 if report.n_failed == 0 else 3


def cmd_cooldown(service: ReadinessService, args: argparse.Namespace) -> int:
    status = service.cooldown_status()
    if args.json:
        _print_json(status)
    elif status["locked"]:
        hours = status["remaining_ms"] / 3_600_000
        print(f"Calibration locked for another {hours:.1f} hours")
    else:
        print("Calibration unlocked")
    return 0


def main(argv: list[str]) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Field readiness status, forecasts and global calibration")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="JSON document directory (default: config stores.data_dir)")
    parser.add_argument("--config", type=Path, default=None,
                        help="Optional YAML configuration file")
    parser.add_argument("--actor", default="cli")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of tables")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("status", help="Current readiness for every field")
    p.add_argument("--op", choices=OP_CHOICES, default=None)
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("forecast", help="Hours until each field reaches its threshold")
    p.add_argument("--field", default=None)
    p.add_argument("--op", choices=OP_CHOICES, default=None)
    p.add_argument("--horizon", type=int, default=None, help="Horizon in hours")
    p.set_defaults(func=cmd_forecast)

    p = sub.add_parser("calibrate", help="Force a reference field to a target readiness")
    p.add_argument("--ref", required=True, help="Reference field id")
    p.add_argument("--target", type=int, required=True)
    p.add_argument("--feel", choices=[f.value for f in Feel], required=True)
    p.add_argument("--op", choices=OP_CHOICES, default=None)
    p.set_defaults(func=cmd_calibrate)

    p = sub.add_parser("rebuild", help="Recompute truth from the baseline seed")
    p.add_argument("--window-days", type=int, default=None)
    p.set_defaults(func=cmd_rebuild)

    p = sub.add_parser("roll-forward", help="Advance truth over new weather days")
    p.set_defaults(func=cmd_roll_forward)

    p = sub.add_parser("cooldown", help="Show the calibration cooldown")
    p.set_defaults(func=cmd_cooldown)

    args = parser.parse_args(argv)

    try:
        config = get_config(args.config)
        logging.basicConfig(
            level=getattr(logging, config.monitoring.log_level),
            format=config.monitoring.log_format,
        )
        service = ReadinessService.from_directory(args.data_dir, config=config, actor=args.actor)
        return args.func(service, args)
    except (FieldReadinessError, OSError, ValueError) as e:
        err = handle_exception(e, ErrorContext(component="cli", operation=args.command))
        logging.getLogger("field_readiness").error(str(err))
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
