"""
Main Orchestration Script for Syndication Junction.

Coordinates all components to:
1. Fetch each requested feed (optionally piping it through a transform)
2. Normalize RSS or Atom into one canonical form
3. Merge it into the stored state of its source
4. Save the store
5. Publish one merged RSS feed, optionally relocating media

Designed to run on demand or via CRON (single execution, then exit).
"""
import os
import sys
import logging
import argparse
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from syndication_junction import __version__
from syndication_junction.config import ConfigLoader, ConfigError
from syndication_junction.feed_fetcher import FeedFetcher, TransportError
from syndication_junction.media import MediaFetcher, MediaRelocator, RelocationReport
from syndication_junction.merge import IngestResult, ingest
from syndication_junction.models import (
    AggregatorConfig,
    CanonicalFeed,
    Store,
    TransformFailurePolicy,
)
from syndication_junction.normalizer import FeedNormalizer, FormatError
from syndication_junction.state_store import PersistenceError, StateStore
from syndication_junction.synthesizer import serialize_feed, synthesize
from syndication_junction.transform import TransformError, run_transform

# Setup logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@dataclass
class SourceOutcome:
    """What happened to one requested source during ingest."""
    url: str
    result: Optional[IngestResult] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class IngestSummary:
    """Outcome of an ingest run."""
    outcomes: List[SourceOutcome] = field(default_factory=list)

    @property
    def failed(self) -> List[SourceOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def succeeded(self) -> List[SourceOutcome]:
        return [outcome for outcome in self.outcomes if outcome.ok]


@dataclass
class PublishResult:
    """Outcome of a publish run."""
    output_path: Path
    item_count: int
    relocation: Optional[RelocationReport] = None
    written: bool = True  # False if an existing output was left in place


class SyndicationJunction:
    """
    Main orchestration.

    Owns the components; the Store itself is loaded per run and passed
    through explicitly.
    """

    def __init__(
        self,
        config: AggregatorConfig,
        state_store: Optional[StateStore] = None,
        fetcher: Optional[FeedFetcher] = None,
        normalizer: Optional[FeedNormalizer] = None,
        media_fetcher: Optional[MediaFetcher] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Runtime configuration
            state_store: Optional StateStore (for testing)
            fetcher: Optional FeedFetcher (for testing)
            normalizer: Optional FeedNormalizer (for testing)
            media_fetcher: Optional MediaFetcher (for testing)
        """
        self.config = config
        self.state_store = state_store or StateStore(Path(config.state_file))
        self.fetcher = fetcher or FeedFetcher(
            timeout=config.timeout,
            max_retries=config.max_retries,
            user_agent=config.user_agent,
        )
        self.normalizer = normalizer or FeedNormalizer()
        self.media_fetcher = media_fetcher or MediaFetcher(
            media_dir=Path(config.media_dir),
            timeout=config.timeout,
            user_agent=config.user_agent,
        )

    def load_store(self) -> Store:
        """
        Load the store, falling back to an empty one.

        A missing document is normal on a first run. An unreadable one is
        reported and the run continues against an empty store.
        """
        store, _ = self._load_store()
        return store

    def _load_store(self) -> Tuple[Store, bool]:
        """Load the store; the flag is True if it was unreadable."""
        try:
            store = self.state_store.load()
        except PersistenceError as e:
            logger.error(f"{e}")
            logger.warning("Continuing with an empty store")
            return Store(), True

        return (store if store is not None else Store()), False

    def init(self) -> bool:
        """
        Create the store document if it does not exist.

        Returns:
            True if it was created

        Raises:
            PersistenceError: If it cannot be written
        """
        return self.state_store.create_if_missing()

    def fetch_source(self, url: str, transform_command: Optional[str] = None) -> CanonicalFeed:
        """
        Fetch, optionally transform, and normalize one source.

        Touches no shared state, so sources can be processed in parallel.

        Args:
            url: Source URL
            transform_command: Command to pipe the raw text through, if any

        Returns:
            Parsed feed

        Raises:
            TransportError: If the feed cannot be fetched
            TransformError: If the transform fails and the policy is "skip"
            FormatError: If the text matches neither schema
        """
        raw_text = self.fetcher.fetch(url)

        if transform_command:
            try:
                raw_text = run_transform(
                    transform_command, raw_text, timeout=self.config.transform_timeout
                )
            except TransformError as e:
                if self.config.transform_failure_policy is not TransformFailurePolicy.USE_ORIGINAL:
                    raise
                logger.error(f"Transform failed for {url}, using untransformed text: {e}")

        return self.normalizer.normalize(raw_text)

    def ingest(self, urls: List[str], store: Optional[Store] = None) -> IngestSummary:
        """
        Ingest sources into the store, then save it once.

        Each source is all-or-nothing: a fetch, transform or format failure
        leaves its stored state untouched and does not stop the others.

        Args:
            urls: Source URLs, merged in this order
            store: Optional already-loaded store (loaded from disk otherwise)

        Returns:
            IngestSummary

        Raises:
            PersistenceError: If the store cannot be saved
        """
        logger.info("=" * 60)
        logger.info("Starting ingest")
        logger.info("=" * 60)

        if store is None:
            store = self.load_store()

        # Same URL twice in one run would be merged twice; once is enough
        urls = list(dict.fromkeys(urls))
        summary = IngestSummary()
        if not urls:
            logger.warning("No sources to ingest")
            return summary

        commands: Dict[str, Optional[str]] = {}
        for url in urls:
            state = store.get_source(url)
            commands[url] = state.transform_command if state else None

        logger.info(f"Processing {len(urls)} sources")

        with ThreadPoolExecutor(max_workers=min(self.config.max_workers, len(urls))) as executor:
            futures = {url: executor.submit(self.fetch_source, url, commands[url]) for url in urls}

            for url in urls:
                try:
                    feed = futures[url].result()
                except KeyboardInterrupt:
                    logger.info("Received interrupt signal, stopping...")
                    raise
                except (TransportError, TransformError, FormatError, ValueError) as e:
                    logger.error(f"Skipping source {url}: {e}")
                    summary.outcomes.append(SourceOutcome(url=url, error=e))
                    continue
                except Exception as e:
                    logger.error(f"Error processing source {url}: {e}", exc_info=True)
                    summary.outcomes.append(SourceOutcome(url=url, error=e))
                    continue

                result = ingest(store, url, feed)
                summary.outcomes.append(SourceOutcome(url=url, result=result))

        self.state_store.save(store)
        logger.info("Store successfully saved")

        logger.info("=" * 60)
        logger.info(
            f"Ingest completed: {len(summary.succeeded)} sources merged, "
            f"{len(summary.failed)} failed"
        )
        logger.info("=" * 60)
        return summary

    def publish(self, output_path: Path, host_prefix: Optional[str] = None) -> PublishResult:
        """
        Synthesize the merged feed and write it out.

        Args:
            output_path: Where to write the RSS document
            host_prefix: Public URL prefix for relocated media; when given,
                media is downloaded and references are rewritten

        Returns:
            PublishResult

        Raises:
            OSError: If the output file cannot be written
        """
        logger.info("=" * 60)
        logger.info("Starting publish")
        logger.info("=" * 60)

        store, degraded = self._load_store()
        output_path = Path(output_path)
        if degraded and output_path.exists():
            logger.warning(
                f"Store could not be read; leaving the previously published {output_path} in place"
            )
            return PublishResult(output_path=output_path, item_count=0, written=False)

        feed = synthesize(store)

        relocation = None
        if host_prefix:
            relocator = MediaRelocator(self.media_fetcher, max_workers=self.config.media_max_workers)
            relocation = relocator.relocate_all(feed.items, host_prefix)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(serialize_feed(feed), encoding="utf-8")

        logger.info(f"Published {len(feed.items)} items to {output_path}")
        return PublishResult(output_path=output_path, item_count=len(feed.items), relocation=relocation)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="syndication-junction",
        description="Merge RSS and Atom feeds into one RSS feed.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to config.yaml (default: $CONFIG_PATH or config.yaml)")
    parser.add_argument("--state-file", help="Path to the store document (overrides config)")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (overrides config)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("init", help="Create the store document if it does not exist")

    ingest_parser = subparsers.add_parser("ingest", help="Fetch sources and merge them into the store")
    ingest_parser.add_argument("urls", nargs="*", help="Source feed URLs (default: sources from config)")

    publish_parser = subparsers.add_parser("publish", help="Write the merged output feed")
    publish_parser.add_argument("output", help="Output file path")
    publish_parser.add_argument(
        "--host-prefix",
        help="URL prefix the media directory is served at; enables media relocation",
    )
    return parser


def load_config(config_arg: Optional[str]) -> AggregatorConfig:
    """
    Load configuration for the CLI.

    An explicitly given config file must exist; the default one is optional.

    Raises:
        ConfigError: If the configuration is invalid
    """
    config_path = Path(config_arg or os.getenv("CONFIG_PATH", "config.yaml"))
    loader = ConfigLoader(config_path)
    if config_arg or config_path.exists():
        return loader.load()
    logger.debug(f"No configuration file at {config_path}, using defaults")
    return loader.parse({})


def main(argv: Optional[List[str]] = None):
    """
    Main entry point for command-line execution.

    Usage:
        syndication-junction init
        syndication-junction ingest https://example.com/feed.xml ...
        syndication-junction publish output/feed.xml --host-prefix https://example.com/media/
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if args.state_file:
        config = replace(config, state_file=args.state_file)

    level = args.log_level or config.log_level.value
    logging.getLogger().setLevel(getattr(logging, level.upper()))

    logger.info(f"Syndication Junction v{__version__}")

    junction = SyndicationJunction(config)

    try:
        if args.command == "init":
            junction.init()
        elif args.command == "ingest":
            urls = args.urls or list(config.sources)
            if not urls:
                logger.error("No source URLs given and none configured")
                sys.exit(2)
            junction.ingest(urls)
        elif args.command == "publish":
            junction.publish(Path(args.output), host_prefix=args.host_prefix)
    except PersistenceError as e:
        logger.error(f"{e}")
        sys.exit(1)
    except OSError as e:
        logger.error(f"Failed to write output: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Syndication Junction failed: {e}", exc_info=True)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
