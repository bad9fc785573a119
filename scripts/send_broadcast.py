#!/usr/bin/env python3
"""
Send a broadcast from the command line.

Plans the audience into chunk jobs, runs a worker until every chunk has
finished, then prints the delivery totals.

Usage:
    # ids file: one Telegram chat id per line (blank lines and # comments ignored)
    python scripts/send_broadcast.py --ids-file vip_ids.txt --text "Market opens in 5 min"

    # With a photo, custom pacing and a specific config
    python scripts/send_broadcast.py --ids-file ids.txt --text "New signal" \\
        --media https://cdn.example.com/chart.png --rps 20 --chunk-size 50 \\
        --config config/settings.yaml
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def read_ids(path: str) -> list[int]:
    ids = []
    with open(path) as f:
        for line in f:
            line = line.split("#", 1)[0].strip()
            if line:
                ids.append(int(line))
    return ids


async def run_broadcast(args) -> int:
    from dotenv import load_dotenv
    load_dotenv()

    from config.settings import load_settings
    settings = load_settings(args.config)
    if args.rps is not None:
        settings.broadcast.rate_per_second = args.rps

    from broadcast.service import BroadcastService
    from models.schemas import BroadcastError, BroadcastsDisabledError, MediaRef

    service = BroadcastService(settings)
    media = MediaRef(url=args.media, kind=args.media_kind) if args.media else None

    # Started before planning: pause_ms spaces out chunk sends only while the worker runs.
    service.start()
    try:
        try:
            plan = await service.plan(
                segment=read_ids(args.ids_file),
                text=args.text,
                media=media,
                chunk_size=settings.broadcast.chunk_size if args.chunk_size is None else args.chunk_size,
                pause_ms=settings.broadcast.pause_ms if args.pause_ms is None else args.pause_ms,
            )
        except BroadcastsDisabledError:
            print("Broadcasts are disabled (flag broadcasts_enabled is off).")
            return 2
        except BroadcastError as e:
            print(f"Rejected: {e}")
            return 2

        print(f"Planned {plan.total} recipients in {plan.chunks} chunks.")
        drained = await service.drain(args.timeout)
    finally:
        await service.stop()

    for job_id, result in sorted(service.results.items()):
        print(f"  chunk job {job_id}: {result.success} sent, {result.failed} failed")
    failed_jobs = [j for j in service.queue.all_jobs() if j.status.value == "failed"]
    for job in failed_jobs:
        print(f"  chunk job {job.id} FAILED after {job.attempts} attempts: {job.last_error}")

    totals = service.summary()
    print(f"Done: {totals.success} sent, {totals.failed} failed.")
    metrics = service.sender_metrics()
    if metrics:
        print(f"Sender: {metrics['retries']} retries, "
              f"avg latency {metrics['avg_latency_ms']}ms, "
              f"failure rate {metrics['failure_rate']:.2%}")
        for error in metrics["recent_errors"]:
            print(f"  recent error: {error}")
    if not drained:
        print("Timed out before every chunk finished.")
        return 1
    return 0 if not failed_jobs else 1


def main():
    parser = argparse.ArgumentParser(description="Send a Telegram broadcast")
    parser.add_argument("--ids-file", required=True, help="File with one chat id per line")
    parser.add_argument("--text", required=True, help="Message text (caption when media is set)")
    parser.add_argument("--media", help="Photo/video URL")
    parser.add_argument("--media-kind", choices=["photo", "video"], default="photo")
    parser.add_argument("--chunk-size", type=int, help="Recipients per job")
    parser.add_argument("--pause-ms", type=int, help="Pause between chunk enqueues")
    parser.add_argument("--rps", type=float, help="Sends per second (<= 0 for unlimited)")
    parser.add_argument("--timeout", type=float, default=None, help="Give up after N seconds")
    parser.add_argument("--config", help="Path to settings.yaml")
    args = parser.parse_args()

    sys.exit(asyncio.run(run_broadcast(args)))


if __name__ == "__main__":
    main()
