import argparse
import logging

from ..config import load_config
from .adapters.sink_file import FileSink
from .adapters.sink_mqtt import MQTTSink
from .adapters.source_rest import RestSourceAdapter
from .core.engine import DataEngine
from .core.interfaces import ISink

logger = logging.getLogger("DataGateway")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Value Stream Data Gateway")
    parser.add_argument("--sink", choices=["mqtt", "file"], default="mqtt", help="Select data sink (mqtt or file)")
    parser.add_argument("--config", default=None, help="Settings file (defaults to $VALUE_STREAM_CONFIG)")
    parser.add_argument("--url", default=None, help="Snapshot URL (overrides gateway_url)")
    parser.add_argument("--file", default="gateway_output.txt", help="Output path for the file sink")
    parser.add_argument("--interval", type=float, default=None, help="Polling interval in seconds")
    return parser


def build_sink(args, config) -> ISink:
    if args.sink == "mqtt":
        return MQTTSink(config["mqtt_broker"], int(config["mqtt_port"]), config["mqtt_topic"])
    return FileSink(args.file)


def main(argv=None):
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    logging.basicConfig(
        level=config.get("log_level", "INFO"),
        format="[VSM] %(asctime)s | %(levelname)s | %(message)s",
    )
    logger.info(f">>> Initializing Data Gateway using {args.sink.upper()} Sink...")

    source = RestSourceAdapter(args.url or config["gateway_url"])
    sink = build_sink(args, config)
    engine = DataEngine(source, sink)

    with source, sink:
        engine.run(interval=args.interval or float(config["gateway_interval_sec"]))


if __name__ == "__main__":
    main()
