#!/usr/bin/env python3
"""
Create a GPS playback trace from a list of waypoints.

Usage:
    python make_trace.py waypoints.txt [-o trace.json] [--mode walking] [--interval 1]

The waypoints file holds one "lat,lon" pair per line (blank lines and lines
starting with # are ignored). Fixes are interpolated along straight lines at
the transport mode's speed, one every --interval seconds, and written in the
format read by ``--playback``.
"""

import argparse
import json
import math
import time
from datetime import datetime

from tourguide import TransportMode, haversine_distance


def read_waypoints(path: str) -> list[tuple[float, float]]:
    waypoints = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            lat, lon = (float(part) for part in line.split(",")[:2])
            waypoints.append((lat, lon))
    return waypoints


def bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1, lat2 = math.radians(lat1), math.radians(lat2)
    dlon = math.radians(lon2 - lon1)
    x = math.sin(dlon) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    return (math.degrees(math.atan2(x, y)) + 360) % 360


def build_trace(waypoints: list[tuple[float, float]], speed: float,
                interval: float = 1.0, accuracy: float = 5.0) -> list[dict]:
    """Interpolate fixes every ``interval`` seconds along the waypoint legs"""
    if not waypoints:
        return []

    start = time.time()
    trace = []
    elapsed = 0.0
    step = speed * interval

    def add(lat, lon, heading):
        trace.append({
            "elapsed": round(elapsed, 3),
            "timestamp": start + elapsed,
            "location": {
                "lat": lat,
                "lon": lon,
                "heading": heading,
                "accuracy": accuracy,
                "timestamp": start + elapsed,
            },
            "status": "Synthetic",
        })

    lat, lon = waypoints[0]
    heading = None
    add(lat, lon, heading)

    for target_lat, target_lon in waypoints[1:]:
        leg = haversine_distance(lat, lon, target_lat, target_lon)
        if leg == 0:
            continue
        heading = bearing(lat, lon, target_lat, target_lon)
        n = max(1, math.ceil(leg / step))
        for i in range(1, n + 1):
            t = i / n
            elapsed += interval * min(1.0, leg / step) if n == 1 else interval
            add(lat + (target_lat - lat) * t, lon + (target_lon - lon) * t, round(heading, 1))
        lat, lon = target_lat, target_lon

    return trace


def main():
    parser = argparse.ArgumentParser(description="Create a GPS playback trace from waypoints")
    parser.add_argument("waypoints", help="File with one lat,lon pair per line")
    parser.add_argument("-o", "--output", default="trace.json", help="Output trace file")
    parser.add_argument("--mode", choices=[m.value for m in TransportMode],
                        default=TransportMode.WALKING.value,
                        help="Transport mode, sets the travel speed (default: walking)")
    parser.add_argument("--interval", type=float, default=1.0,
                        help="Seconds between fixes (default: 1.0)")
    args = parser.parse_args()

    waypoints = read_waypoints(args.waypoints)
    if len(waypoints) < 2:
        parser.error("need at least two waypoints")

    speed = TransportMode(args.mode).fallback_speed
    trace = build_trace(waypoints, speed, args.interval)

    with open(args.output, "w") as f:
        json.dump({
            "recorded_at": datetime.now().isoformat(),
            "trace": trace
        }, f, indent=2)

    duration = trace[-1]["elapsed"] if trace else 0
    print(f"Trace saved to {args.output} ({len(trace)} fixes, {duration / 60:.1f} minutes)")


if __name__ == "__main__":
    main()
