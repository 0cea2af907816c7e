#!/usr/bin/env python3
"""
VirtualRouter Controller - Entry Point

A CRD-based Kubernetes controller that watches VirtualRouter objects and
reconciles each one into a router Deployment in its own namespace.

Usage:
    python run.py [--namespace NAMESPACE] [--workers N] [--in-cluster]
"""

import argparse
import logging
import signal
import sys
import threading

from kubernetes import config

from virtualrouter_controller.config import DEFAULT_WORKERS, RESYNC_PERIOD_SECONDS
from virtualrouter_controller.controller import VirtualRouterController

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="VirtualRouter Controller - Reconcile VirtualRouter objects into router Deployments"
    )
    parser.add_argument(
        "--namespace", "-n",
        default="",
        help="Namespace to watch for VirtualRouters (default: all namespaces)"
    )
    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=DEFAULT_WORKERS,
        help=f"Number of worker threads (default: {DEFAULT_WORKERS})"
    )
    parser.add_argument(
        "--resync-seconds",
        type=float,
        default=RESYNC_PERIOD_SECONDS,
        help=f"Informer resync period in seconds, 0 to disable (default: {RESYNC_PERIOD_SECONDS})"
    )
    parser.add_argument(
        "--no-status-subresource",
        action="store_true",
        help="Update the whole VirtualRouter object instead of its status subresource"
    )
    parser.add_argument(
        "--in-cluster",
        action="store_true",
        help="Use in-cluster config (for running inside Kubernetes)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging"
    )
    return parser.parse_args(argv)


def main():
    """Main entry point."""
    args = parse_args()

    # Set log level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Load Kubernetes configuration
    try:
        if args.in_cluster:
            config.load_incluster_config()
            logger.info("Loaded in-cluster configuration")
        else:
            config.load_kube_config()
            logger.info("Loaded kubeconfig from default location")
    except Exception as e:
        logger.error(f"Failed to load Kubernetes config: {e}")
        sys.exit(1)

    controller = VirtualRouterController(
        namespace=args.namespace,
        resync_period=args.resync_seconds,
        use_status_subresource=not args.no_status_subresource,
    )

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Shutdown requested...")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        controller.run(workers=args.workers, stop_event=stop_event)
    except Exception as e:
        logger.error(f"Controller error: {e}")
        sys.exit(1)
    logger.info("Controller stopped")


if __name__ == "__main__":
    main()
