#!/usr/bin/env python3
"""
Walkscape - geolocated audio walking tours

Usage:
    python -m walkscape <command> [options]

Commands:
    list                      List local drafts and published tours
    play TOUR                 Walk a tour (by id or slug)
        --lat LAT --lon LON   Fixed position (for testing without GPS)
        --playback FILE       Play back a recorded position trace
        --record FILE         Record the position trace to a JSON file
        --simulate            Walk a synthetic trace through every region
        --debug-gui           Browser map; click to move
    publish TOUR [TOUR ...]   Publish tours to the shared catalog
    delete TOUR               Delete a local tour (and its remote assets if published)
    seed                      Create the demo tour
    copy-locale TOUR LOCALE   Create a language variant of a tour
    map TOUR                  Export an HTML map preview
    transcribe AUDIO          Transcribe an audio file to SRT
    storage-info              Local cache usage
    clear-media               Strip embedded audio/images from the local cache
    status                    Check the remote storage connection

Environment (a .env file is honoured):
    STORAGE_URL, SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, OPENAI_API_KEY
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from .app import Player, recording_player, simulated_player
from .config import CONFIG, Settings, load_settings
from .editor import copy_for_locale, seed_tour
from .errors import WalkscapeError
from .gps import FixedPosition, GPSPlayback
from .logger import Logger
from .persistence import PersistenceOptimizer
from .publish import PublishPipeline
from .remote import build_catalog
from .repository import TourRepository
from .storage import SQLiteStore
from .tour_map import save_tour_map
from .transcribe import Transcriber


def open_repository(settings: Settings, logger: Logger, refresh: bool = True) -> TourRepository:
    store = SQLiteStore(settings.cache_path, quota_bytes=CONFIG["cache_quota_bytes"])
    optimizer = PersistenceOptimizer(store, logger=logger)
    catalog = build_catalog(settings.storage_url, settings.supabase_url, settings.supabase_key, logger=logger)
    return TourRepository(optimizer, catalog, logger=logger, refresh=refresh)


def _open_tour(repository: TourRepository, ref: str):
    result = repository.open(ref)
    if not result.ok:
        print(f"Error: {result.error.message}")
        sys.exit(1)
    return result.value


def cmd_list(args, settings: Settings, logger: Logger):
    repository = open_repository(settings, logger)
    tours = repository.local_tours() if args.local else repository.list_available()
    if not tours:
        print("No tours. Run 'python -m walkscape seed' to create a demo tour.")
        return
    local_ids = {t.id for t in repository.local_tours()}
    for tour in tours:
        origin = "local" if tour.id in local_ids else "remote"
        state = "published" if tour.published else "draft"
        print(f"{tour.slug:30} {tour.locale:6} {state:9} {origin:6} {len(tour.regions):3} regions  {tour.title}")


def cmd_play(args, settings: Settings, logger: Logger):
    if (args.lat is None) != (args.lon is None):
        print("Error: --lat and --lon must be used together")
        sys.exit(2)

    repository = open_repository(settings, logger)
    tour = _open_tour(repository, args.tour)

    if args.simulate:
        player = simulated_player(tour, locale=args.locale, speed=args.speed, logger=logger)
    else:
        start_location = (args.lat, args.lon) if args.lat is not None else None
        player = Player(
            tour,
            locale=args.locale,
            start_location=start_location,
            resolve_key=repository.catalog.public_url,
            debug_gui=args.debug_gui,
            logger=logger,
        )
        if args.playback:
            if not Path(args.playback).exists():
                print(f"Playback file not found: {args.playback}")
                sys.exit(1)
            player.set_gps_source(GPSPlayback.from_file(args.playback, args.speed))
        elif start_location and not args.debug_gui:
            player.set_gps_source(FixedPosition(args.lat, args.lon))
        if args.record:
            recording_player(player, args.record)

    player.run()


def cmd_publish(args, settings: Settings, logger: Logger):
    repository = open_repository(settings, logger)
    tours = [_open_tour(repository, ref) for ref in args.tours]
    pipeline = PublishPipeline(repository.catalog, repository=repository, logger=logger)
    failed = 0
    for result in pipeline.publish_many(tours):
        if result.ok:
            print(f"Published {result.slug}: {result.manifest_url}")
        else:
            failed += 1
            field = f" [{result.error.field}]" if result.error.field else ""
            print(f"Failed {result.slug}{field}: {result.error.message}")
    if failed:
        sys.exit(1)


def cmd_delete(args, settings: Settings, logger: Logger):
    repository = open_repository(settings, logger)
    tour = _open_tour(repository, args.tour)
    report = repository.remove(tour.id)
    print(f"Deleted {tour.slug}")
    if report is not None:
        print(json.dumps(report.to_dict(), indent=2))
        if not report.complete:
            sys.exit(1)


def cmd_seed(args, settings: Settings, logger: Logger):
    repository = open_repository(settings, logger, refresh=False)
    tour = seed_tour(slug=args.slug)
    repository.upsert(tour)
    print(f"Created {tour.slug} ({tour.id}) with {len(tour.regions)} regions")


def cmd_copy_locale(args, settings: Settings, logger: Logger):
    if args.locale not in CONFIG["locales"]:
        print(f"Unsupported locale {args.locale}; choose from {', '.join(CONFIG['locales'])}")
        sys.exit(2)
    repository = open_repository(settings, logger, refresh=False)
    tour = _open_tour(repository, args.tour)
    variant = copy_for_locale(tour, args.locale)
    repository.upsert(variant)
    print(f"Created {variant.slug} ({variant.locale}) from {tour.slug}")


def cmd_map(args, settings: Settings, logger: Logger):
    repository = open_repository(settings, logger)
    tour = _open_tour(repository, args.tour)
    trace = None
    if args.trace:
        playback = GPSPlayback.from_file(args.trace)
        trace = []
        while not playback.is_finished():
            location = playback.get_location()
            if location:
                trace.append(location)
    output = args.output or f"{tour.slug}_map.html"
    save_tour_map(tour, output, locale=args.locale, trace=trace)
    print(f"Map saved to {output}")


def cmd_transcribe(args, settings: Settings, logger: Logger):
    transcriber = Transcriber(settings.openai_api_key, logger=logger)
    result = transcriber.transcribe(args.audio, language=args.language)
    if result.warning:
        print(f"Warning: {result.warning}")
    srt = result.srt()
    if args.output:
        Path(args.output).write_text(srt, encoding="utf-8")
        print(f"{len(result.cues)} cues written to {args.output}")
    else:
        print(srt)


def cmd_storage_info(args, settings: Settings, logger: Logger):
    repository = open_repository(settings, logger, refresh=False)
    info = repository.optimizer.storage_info()
    print(f"Local cache: {info['bytes'] / 1024:.1f} KB of {info['quota'] / 1024 / 1024:.1f} MB ({info['percent']}%)")
    print(f"Tours: {len(repository.local_tours())}")


def cmd_clear_media(args, settings: Settings, logger: Logger):
    repository = open_repository(settings, logger, refresh=False)
    report = repository.clear_media()
    print(f"Cache rewritten: {report.bytes / 1024:.1f} KB")


def cmd_status(args, settings: Settings, logger: Logger):
    catalog = build_catalog(settings.storage_url, settings.supabase_url, settings.supabase_key, logger=logger)
    status = catalog.status()
    print(json.dumps(status, indent=2))
    if status["status"] != "success":
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Walkscape - geolocated audio walking tours"
    )
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path (default: walkscape_TIMESTAMP.log for play)")
    parser.add_argument("--quiet", action="store_true",
                        help="Do not echo log lines to stdout")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List tours")
    p.add_argument("--local", action="store_true", help="Only local drafts")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("play", help="Walk a tour")
    p.add_argument("tour", help="Tour id or slug")
    p.add_argument("--locale", help="Track locale (default: the tour's)")
    p.add_argument("--lat", type=float, metavar="LAT", help="Fixed latitude (testing without GPS)")
    p.add_argument("--lon", type=float, metavar="LON", help="Fixed longitude (testing without GPS)")
    p.add_argument("--playback", metavar="FILE", help="Play back a recorded position trace")
    p.add_argument("--record", metavar="FILE", help="Record the position trace to a JSON file")
    p.add_argument("--speed", type=float, default=1.0, help="Playback speed multiplier (default: 1.0)")
    p.add_argument("--simulate", action="store_true", help="Walk a synthetic trace through every region")
    p.add_argument("--debug-gui", action="store_true", help="Run with the browser debugger")
    p.set_defaults(func=cmd_play)

    p = sub.add_parser("publish", help="Publish tours")
    p.add_argument("tours", nargs="+", help="Tour ids or slugs")
    p.set_defaults(func=cmd_publish)

    p = sub.add_parser("delete", help="Delete a local tour")
    p.add_argument("tour", help="Tour id or slug")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("seed", help="Create the demo tour")
    p.add_argument("--slug", default="bandite-demo")
    p.set_defaults(func=cmd_seed)

    p = sub.add_parser("copy-locale", help="Create a language variant")
    p.add_argument("tour", help="Tour id or slug")
    p.add_argument("locale", help="Target locale, e.g. en-US")
    p.set_defaults(func=cmd_copy_locale)

    p = sub.add_parser("map", help="Export an HTML map preview")
    p.add_argument("tour", help="Tour id or slug")
    p.add_argument("--output", "-o", metavar="FILE")
    p.add_argument("--locale")
    p.add_argument("--trace", metavar="FILE", help="Overlay a recorded position trace")
    p.set_defaults(func=cmd_map)

    p = sub.add_parser("transcribe", help="Transcribe audio to SRT")
    p.add_argument("audio", help="Audio file")
    p.add_argument("--language", default="it")
    p.add_argument("--output", "-o", metavar="FILE")
    p.set_defaults(func=cmd_transcribe)

    sub.add_parser("storage-info", help="Local cache usage").set_defaults(func=cmd_storage_info)
    sub.add_parser("clear-media", help="Strip embedded media from the cache").set_defaults(func=cmd_clear_media)
    sub.add_parser("status", help="Check remote storage").set_defaults(func=cmd_status)
    return parser


def main(argv=None):
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    log_path = args.log
    if not log_path and args.command == "play":
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = f"walkscape_{timestamp}.log"

    settings = load_settings()
    logger = Logger(log_path, echo=not args.quiet)
    try:
        args.func(args, settings, logger)
    except WalkscapeError as e:
        logger.error("Command failed", {"command": args.command, "error": str(e)})
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        logger.close()


if __name__ == "__main__":
    main()
