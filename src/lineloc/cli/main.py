from __future__ import annotations

import argparse
import json
import math
import sys
from pathlib import Path

from lineloc.api.builder import LocalizerBuilder
from lineloc.config import load_localizer_config
from lineloc.core.ellipsoid import GeodeticPoint
from lineloc.errors import LineLocError
from lineloc.logging_setup import setup_logging


def _point_json(pixel: float, gp: GeodeticPoint) -> dict[str, float]:
    return {
        "pixel": float(pixel),
        "latitude_deg": math.degrees(gp.latitude),
        "longitude_deg": math.degrees(gp.longitude),
        "altitude_m": gp.altitude,
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="lineloc")
    parser.add_argument("--log-level", type=str, default=None, help="Overrides $LINELOC_LOG_LEVEL.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    direct = sub.add_parser("direct", help="Ground points seen by one sensor line.")
    direct.add_argument("--config", type=Path, required=True)
    direct.add_argument("--sensor", type=str, required=True)
    direct.add_argument("--line", type=float, required=True)
    direct.add_argument("--pixel", type=float, default=None, help="Single (fractional) pixel instead of the whole line.")

    inverse = sub.add_parser("inverse", help="Sensor pixel seeing a ground point.")
    inverse.add_argument("--config", type=Path, required=True)
    inverse.add_argument("--sensor", type=str, required=True)
    inverse.add_argument("--lat-deg", type=float, required=True)
    inverse.add_argument("--lon-deg", type=float, required=True)
    inverse.add_argument("--alt", type=float, default=0.0, help="Altitude above the ellipsoid (m).")
    inverse.add_argument("--min-line", type=float, required=True)
    inverse.add_argument("--max-line", type=float, required=True)

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_localizer_config(args.config)
        localizer = LocalizerBuilder.from_config(config).build()

        if args.cmd == "direct":
            if args.pixel is not None:
                points = [_point_json(args.pixel, localizer.direct_location(args.sensor, args.line, args.pixel))]
            else:
                points = [
                    _point_json(i, gp) for i, gp in enumerate(localizer.direct_localization(args.sensor, args.line))
                ]
            date = localizer.get_line_sensor(args.sensor).get_date(args.line)
            out: dict[str, object] = {"sensor": args.sensor, "line": args.line, "date": date}
            utc = config.absolute_date(date)
            if utc is not None:
                out["utc"] = utc.isoformat()
            out["points"] = points
            print(json.dumps(out, indent=2))
            return 0

        if args.cmd == "inverse":
            gp = GeodeticPoint(math.radians(args.lat_deg), math.radians(args.lon_deg), args.alt)
            sp = localizer.inverse_localization(args.sensor, gp, args.min_line, args.max_line)
            if sp is None:
                out = {"sensor": args.sensor, "seen": False}
            else:
                out = {"sensor": args.sensor, "seen": True, "line": sp.line_number, "pixel": sp.pixel_number}
            print(json.dumps(out, indent=2))
            return 0
    except LineLocError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    raise AssertionError(f"Unhandled cmd: {args.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
