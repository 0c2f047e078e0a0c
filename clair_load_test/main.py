from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
from pathlib import Path

from . import config
from .charts import render_run_charts
from .collector import RequestSampleCollector
from .config import ConfigError, RunConfig
from .dispatcher import AdmissionError, Dispatcher
from .manifest import ClairctlManifestSource
from .pipeline import ReportPipeline, create_session

LOGGER = logging.getLogger("clair_load_test")

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    env = os.environ
    parser = argparse.ArgumentParser(
        prog="clair-load-test",
        description="Generate sustained report load against a Clair deployment",
    )
    parser.add_argument(
        "--log-level",
        default=env.get(config.ENV_LOG_LEVEL, "INFO"),
        help="Logging level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    report = subparsers.add_parser(
        "report",
        help="request reports for named containers",
        description="Request index and vulnerability reports for named containers until the timeout elapses",
    )
    report.add_argument(
        "--host",
        default=env.get(config.ENV_HOST, config.DEFAULT_HOST),
        help="Base address of the Clair API",
    )
    report.add_argument(
        "--containers",
        default=env.get(config.ENV_CONTAINERS, ""),
        help="Comma-separated container references, e.g. ubuntu:latest,mysql:latest",
    )
    report.add_argument(
        "--concurrency",
        default=env.get(config.ENV_CONCURRENCY, "1"),
        help="Maximum number of containers processed at once",
    )
    report.add_argument(
        "--psk",
        default=env.get(config.ENV_PSK, ""),
        help="Base64 encoded pre-shared key used to sign request tokens",
    )
    report.add_argument(
        "--delete",
        action="store_const",
        const="true",
        default=env.get(config.ENV_DELETE, "false"),
        help="Delete each index report once its vulnerability report was fetched",
    )
    report.add_argument(
        "--timeout",
        default=env.get(config.ENV_TIMEOUT, config.DEFAULT_TIMEOUT),
        help="How long to keep submitting work, e.g. 1m, 90s, 1m30s",
    )
    report.add_argument(
        "--request-timeout",
        default=env.get(config.ENV_REQUEST_TIMEOUT, config.DEFAULT_REQUEST_TIMEOUT),
        help="Timeout applied to each HTTP request",
    )
    report.add_argument(
        "--clairctl",
        default=env.get(config.ENV_CLAIRCTL, config.DEFAULT_CLAIRCTL),
        help="clairctl executable used to generate manifests",
    )
    report.add_argument(
        "--output-dir",
        default=env.get(config.ENV_OUTPUT_DIR),
        help="Directory for per-request CSV samples and latency charts",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def build_config(args: argparse.Namespace) -> RunConfig:
    try:
        concurrency = int(args.concurrency)
    except ValueError as exc:
        raise ConfigError(f"invalid concurrency {args.concurrency!r}") from exc

    return RunConfig(
        artifacts=config.parse_artifacts(args.containers),
        concurrency=concurrency,
        timeout_s=config.parse_duration(args.timeout),
        base_url=args.host,
        psk=args.psk,
        delete=config.parse_bool(args.delete),
        request_timeout_s=config.parse_duration(args.request_timeout),
        clairctl=args.clairctl,
        output_dir=Path(args.output_dir) if args.output_dir else None,
    ).validate()


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    setup_logging(args.log_level)

    try:
        run_config = build_config(args)
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    collector = RequestSampleCollector() if run_config.output_dir else None
    session = create_session(run_config.concurrency)
    pipeline = ReportPipeline(
        base_url=run_config.base_url,
        psk=run_config.psk,
        session=session,
        manifest_source=ClairctlManifestSource(run_config.clairctl),
        delete=run_config.delete,
        request_timeout_s=run_config.request_timeout_s,
        sample_callback=collector,
    )
    dispatcher = Dispatcher(pipeline, run_config.concurrency, run_config.timeout_s)

    previous_handler = _install_interrupt_handler(dispatcher)
    try:
        snapshot = dispatcher.run(run_config.artifacts)
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except AdmissionError as exc:
        print(f"load test aborted: {exc}", file=sys.stderr)
        return EXIT_RUN_FAILED
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("load test failed")
        print(f"load test failed: {exc!r}", file=sys.stderr)
        return EXIT_RUN_FAILED
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)
        session.close()

    summary = snapshot.to_dict()
    print(json.dumps(summary, indent=2))

    if collector is not None and run_config.output_dir is not None:
        write_artifacts(collector, summary, run_config.output_dir)
    return EXIT_OK


def write_artifacts(
    collector: RequestSampleCollector,
    summary: dict[str, int | float],
    output_dir: Path,
) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)
    csv_path = collector.write_csv(output_dir / "requests.csv")
    LOGGER.info("Saved %d request sample(s) to %s", len(collector), csv_path)

    charts = render_run_charts(collector.build_dataframe(), output_dir)
    manifest_path = output_dir / "summary.json"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(
            {
                "stats": summary,
                "latency": collector.summaries(),
                "charts": [str(path) for path in charts],
            },
            f,
            indent=2,
        )
    LOGGER.info("Run summary written to %s", manifest_path)


def _install_interrupt_handler(dispatcher: Dispatcher):
    def handler(signum, frame) -> None:
        print("stopping load test", file=sys.stderr)
        dispatcher.cancel()

    return signal.signal(signal.SIGINT, handler)


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
