"""
Command line entry point.

    speedprobe --ip 162.159.140.221 --size 104857600 --count 5 --verbose

Flags override SPEEDTEST_* environment variables (see speedprobe.config).
"""
import argparse
import logging
from typing import List, Optional

from speedprobe.config import load_config
from speedprobe.errors import SpeedTestError
from speedprobe.report import plot_results, print_result, save_to_csv
from speedprobe.tester import SpeedTester


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="speedprobe",
        description="Measure upload/download throughput and latency against a speed test endpoint.",
    )
    parser.add_argument("--ip", dest="cloudflare_ip", default=None,
                        help="dial this address on port 443 instead of resolving the host")
    parser.add_argument("--host", default=None, help="measurement service host name")
    parser.add_argument("--size", dest="packet_size", type=int, default=None,
                        help="payload size of each transfer in bytes")
    parser.add_argument("--count", dest="packet_count", type=int, default=None,
                        help="number of transfers per pass")
    parser.add_argument("-v", "--verbose", action="store_true", default=None,
                        help="log every transfer")
    parser.add_argument("--headers-only", dest="drain_download", action="store_false", default=None,
                        help="stop the download clock when headers arrive instead of draining the body")
    parser.add_argument("--csv", dest="csv_file", default=None, help="append the result to this CSV file")
    parser.add_argument("--plot", dest="plot_file", default=None, help="save a result chart to this file")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        config = load_config(
            cloudflare_ip=args.cloudflare_ip,
            host=args.host,
            packet_size=args.packet_size,
            packet_count=args.packet_count,
            verbose=args.verbose,
            drain_download=args.drain_download,
        )
        if config.verbose:
            logging.getLogger().setLevel(logging.INFO)
        result = SpeedTester(config).run_test()
    except SpeedTestError as e:
        logger.error(f"Speed test failed: {e}")
        return 1

    print_result(result)

    if args.csv_file:
        save_to_csv(result, args.csv_file, config)
    if args.plot_file:
        plot_results(result, args.plot_file)

    return 0
