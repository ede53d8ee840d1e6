#!/usr/bin/env python3
"""
Tourguide - Guided walking tours through an itinerary of sites

Usage:
    python -m tourguide ITINERARY_ID [options]

Options:
    --mode MODE       Transport mode: walking, cycling or driving (default: walking)
    --guest           Track progress for this session only
    --token TOKEN     API token (default: $TOURGUIDE_API_TOKEN)
    --user-id ID      User id for an authenticated session
    --lat LAT         Starting latitude (for testing without GPS)
    --lon LON         Starting longitude (for testing without GPS)
    --playback FILE   Playback GPS trace from JSON file
    --speed FACTOR    Playback speed multiplier (default: 1.0)
    --record FILE     Record GPS trace to JSON file for debugging
    --ws-port PORT    Take positions from a phone/browser over WebSocket
    --log FILE        Log file path (default: tourguide_TIMESTAMP.log)
    --quiet           Disable spoken announcements
    --resume          Resume saved progress without asking
    --restart         Discard saved position in the tour and re-optimize
"""

import argparse
import asyncio
import os
import sys
import uuid
from datetime import datetime
from pathlib import Path

from .app import TourGuide
from .gps import GPS, FixedPosition, GPSPlayback, GPSRecorder
from .models import AuthenticatedIdentity, GuestIdentity, TransportMode
from .ws_source import WebSocketPositionSource


def main():
    parser = argparse.ArgumentParser(
        description="Tourguide - Guided walking tours through an itinerary of sites"
    )
    parser.add_argument("itinerary_id", help="Itinerary to tour")
    parser.add_argument("--mode", choices=[m.value for m in TransportMode],
                        default=TransportMode.WALKING.value,
                        help="Transport mode (default: walking)")
    parser.add_argument("--guest", action="store_true",
                        help="Track progress for this session only")
    parser.add_argument("--token", default=os.environ.get("TOURGUIDE_API_TOKEN"),
                        help="API token (default: $TOURGUIDE_API_TOKEN)")
    parser.add_argument("--user-id", default="me",
                        help="User id for an authenticated session")
    parser.add_argument("--lat", type=float, metavar="LAT",
                        help="Starting latitude (for testing without GPS)")
    parser.add_argument("--lon", type=float, metavar="LON",
                        help="Starting longitude (for testing without GPS)")
    parser.add_argument("--playback", metavar="FILE",
                        help="Playback GPS trace from JSON file")
    parser.add_argument("--speed", type=float, default=1.0,
                        help="Playback speed multiplier (default: 1.0)")
    parser.add_argument("--record", metavar="FILE",
                        help="Record GPS trace to JSON file")
    parser.add_argument("--ws-port", type=int, metavar="PORT",
                        help="Take positions from a phone/browser over WebSocket")
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path (default: tourguide_TIMESTAMP.log)")
    parser.add_argument("--quiet", action="store_true",
                        help="Disable spoken announcements")
    choice = parser.add_mutually_exclusive_group()
    choice.add_argument("--resume", action="store_true",
                        help="Resume saved progress without asking")
    choice.add_argument("--restart", action="store_true",
                        help="Re-optimize from the current position without asking")

    args = parser.parse_args()

    # Validate lat/lon - must provide both or neither
    if (args.lat is None) != (args.lon is None):
        parser.error("--lat and --lon must be used together")

    sources = [args.lat is not None, bool(args.playback), args.ws_port is not None]
    if sum(sources) > 1:
        parser.error("--lat/--lon, --playback and --ws-port are mutually exclusive")

    if args.guest or not args.token:
        identity = GuestIdentity(session_id=uuid.uuid4().hex)
    else:
        identity = AuthenticatedIdentity(user_id=args.user_id, token=args.token)

    # Set up position source
    if args.playback:
        if not Path(args.playback).exists():
            print(f"Playback file not found: {args.playback}")
            sys.exit(1)
        source = GPSPlayback(args.playback, args.speed)
    elif args.lat is not None:
        source = FixedPosition(args.lat, args.lon)
    elif args.ws_port is not None:
        source = WebSocketPositionSource(port=args.ws_port)
    else:
        source = GPS()
    if args.record:
        source = GPSRecorder(source, args.record)

    log_path = args.log
    if not log_path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = f"tourguide_{timestamp}.log"

    resume_choice = "resume" if args.resume else "restart" if args.restart else None
    guide = TourGuide(
        args.itinerary_id,
        identity,
        source,
        mode=TransportMode(args.mode),
        log_path=log_path,
        announce=not args.quiet,
        resume_choice=resume_choice,
    )

    try:
        asyncio.run(guide.run())
    except KeyboardInterrupt:
        print("\nStopped")


if __name__ == "__main__":
    main()
