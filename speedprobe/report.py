import csv
import logging
import os
from datetime import datetime
from typing import List, Optional

import matplotlib.pyplot as plt

from speedprobe.config import SpeedTestConfig
from speedprobe.tester import SpeedTestResult
from speedprobe.timing import format_duration


logger = logging.getLogger(__name__)


CSV_FIELDS = [
    "timestamp",
    "host",
    "cloudflare_ip",
    "packet_size",
    "packet_count",
    "upload_mbps",
    "download_mbps",
    "upload_latency_ms",
    "download_latency_ms",
]


# ==============================================================================
# TEXT OUTPUT
# ==============================================================================


def format_result(result: SpeedTestResult) -> List[str]:
    """The four summary lines printed after a run."""
    return [
        f"Average Download Speed: {result.avg_download_speed_mb:.2f} Mb/s",
        f"Average Upload Speed: {result.avg_upload_speed_mb:.2f} Mb/s",
        f"Average Download Latency: {format_duration(result.avg_download_latency)}",
        f"Average Upload Latency: {format_duration(result.avg_upload_latency)}",
    ]


def print_result(result: SpeedTestResult) -> None:
    for line in format_result(result):
        print(line)


# ==============================================================================
# CSV & PLOT
# ==============================================================================


def result_row(result: SpeedTestResult, config: SpeedTestConfig,
               timestamp: Optional[datetime] = None) -> dict:
    timestamp = timestamp or datetime.now()
    return {
        "timestamp": timestamp.isoformat(timespec="seconds"),
        "host": config.host,
        "cloudflare_ip": config.cloudflare_ip or "",
        "packet_size": config.packet_size,
        "packet_count": config.packet_count,
        "upload_mbps": round(result.avg_upload_speed_mb, 4),
        "download_mbps": round(result.avg_download_speed_mb, 4),
        "upload_latency_ms": round(result.avg_upload_latency.total_seconds() * 1000, 3),
        "download_latency_ms": round(result.avg_download_latency.total_seconds() * 1000, 3),
    }


def save_to_csv(result: SpeedTestResult, path: str, config: SpeedTestConfig,
                timestamp: Optional[datetime] = None) -> bool:
    """Append one run to a CSV file, writing the header if the file is new."""
    new_file = not os.path.exists(path) or os.path.getsize(path) == 0
    try:
        with open(path, "a", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
            if new_file:
                writer.writeheader()
            writer.writerow(result_row(result, config, timestamp))

        logger.info(f"Result appended to: {path}")
        return True
    except IOError as e:
        logger.error(f"Failed to write CSV {path}: {e}")
        return False


def plot_results(result: SpeedTestResult, path: str) -> bool:
    """Save a two-panel bar chart: throughput and corrected latency."""
    labels = ["Upload", "Download"]
    speeds = [result.avg_upload_speed_mb, result.avg_download_speed_mb]
    latencies = [
        result.avg_upload_latency.total_seconds() * 1000,
        result.avg_download_latency.total_seconds() * 1000,
    ]
    colors = ['#1f77b4', '#ff7f0e']

    fig, (ax_speed, ax_latency) = plt.subplots(1, 2, figsize=(12, 5))
    try:
        ax_speed.bar(labels, speeds, color=colors)
        ax_speed.set_ylabel("Throughput (Mb/s)")
        ax_speed.set_title("Average Throughput")
        for i, value in enumerate(speeds):
            ax_speed.text(i, value, f"{value:.2f}", ha='center', va='bottom')

        ax_latency.bar(labels, latencies, color=colors)
        ax_latency.set_ylabel("Latency (ms)")
        ax_latency.set_title("Average Corrected Latency")
        for i, value in enumerate(latencies):
            ax_latency.text(i, value, f"{value:.1f}", ha='center', va='bottom')

        for ax in (ax_speed, ax_latency):
            ax.grid(True, axis='y', linestyle='--', alpha=0.6)

        fig.tight_layout()
        fig.savefig(path, dpi=150, bbox_inches='tight')
        logger.info(f"Plot saved to: {path}")
        return True
    except (IOError, ValueError) as e:
        logger.error(f"Failed to save plot {path}: {e}")
        return False
    finally:
        plt.close(fig)
