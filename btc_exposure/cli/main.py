"""Command-line interface for the exposure indexer."""

import sys
import json
from typing import Optional
import click

from btc_exposure import __version__
from btc_exposure.models.config import IndexerConfig
from btc_exposure.core.exceptions import ChainIntegrityError, IndexerError
from btc_exposure.core.indexer import Indexer
from btc_exposure.core.script_classifier import ScriptClassifier
from btc_exposure.database.manager import DatabaseManager
from btc_exposure.utils.logging import setup_logging


@click.group()
@click.option('--config-file', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--log-level', '-l', default='INFO',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Logging level')
@click.pass_context
def cli(ctx, config_file: Optional[str], log_level: str):
    """Bitcoin public key exposure indexer CLI."""
    ctx.ensure_object(dict)

    try:
        if config_file:
            config = IndexerConfig(_env_file=config_file)
        else:
            # Load from default .env file or environment
            config = IndexerConfig()

        config.log_level = log_level
        ctx.obj['config'] = config

    except ValueError as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    setup_logging(config)


@cli.command()
@click.option('--reset', is_flag=True,
              help='Drop every table first, discarding the whole index')
@click.pass_context
def init_db(ctx, reset: bool):
    """Initialize the database schema."""
    config = ctx.obj['config']

    if reset:
        click.confirm("This deletes the entire index. Continue?", abort=True)

    click.echo("Initializing database...")

    db_manager = DatabaseManager(config)
    try:
        if not db_manager.test_connection():
            click.echo("❌ Failed to connect to database", err=True)
            sys.exit(1)
        if reset:
            db_manager.drop_tables()
            click.echo("🗑️  Existing tables dropped")
        db_manager.create_tables()
        click.echo("✅ Database initialized successfully")
    finally:
        db_manager.close()


@cli.command()
@click.option('--end-height', '-e', type=int, default=None,
              help='Ending block height (default: current tip)')
@click.option('--continuous', is_flag=True,
              help='Keep following the chain tip')
@click.option('--poll-interval', '-p', type=int, default=None,
              help='Polling interval for continuous sync (seconds)')
@click.pass_context
def sync(ctx, end_height: Optional[int], continuous: bool, poll_interval: Optional[int]):
    """Ingest blocks from the next expected height."""
    config = ctx.obj['config']
    indexer = Indexer(config)

    try:
        if not indexer.initialize():
            click.echo("❌ Failed to initialize indexer", err=True)
            sys.exit(1)

        if continuous:
            click.echo("🔄 Starting continuous synchronization")
            click.echo("Press Ctrl+C to stop...")
            indexer.continuous_sync(poll_interval)
        else:
            status = indexer.get_sync_status()
            click.echo(f"📊 Node height: {status.get('node_height')}")
            click.echo(f"📊 Next height: {status.get('next_height')}")

            click.echo("🔄 Starting synchronization...")
            ingested = indexer.sync(end_height)
            click.echo(f"✅ Synchronization completed, {ingested} blocks ingested")

    except KeyboardInterrupt:
        click.echo("\n🛑 Synchronization interrupted by user")
    except ChainIntegrityError as e:
        click.echo(f"❌ Chain integrity violation: {e}", err=True)
        sys.exit(2)
    except IndexerError as e:
        click.echo(f"❌ Synchronization failed: {e}", err=True)
        sys.exit(1)
    finally:
        indexer.close()


@cli.command()
@click.argument('height', type=int)
@click.pass_context
def ingest_block(ctx, height: int):
    """Ingest a single block (must be the next expected height)."""
    config = ctx.obj['config']
    indexer = Indexer(config)

    try:
        if not indexer.initialize():
            click.echo("❌ Failed to initialize indexer", err=True)
            sys.exit(1)

        click.echo(f"🔄 Ingesting block {height}...")
        result = indexer.ingest_height(height)

        if result is None:
            click.echo(f"ℹ️  Block {height} already ingested")
        else:
            click.echo(f"✅ Block {height} ingested: {result.tx_count} transactions, "
                       f"{result.new_addresses} new addresses, "
                       f"{result.newly_exposed} newly exposed")

    except ChainIntegrityError as e:
        click.echo(f"❌ Chain integrity violation: {e}", err=True)
        sys.exit(2)
    except IndexerError as e:
        click.echo(f"❌ Block ingest failed: {e}", err=True)
        sys.exit(1)
    finally:
        indexer.close()


@cli.command()
@click.pass_context
def status(ctx):
    """Show synchronization status."""
    config = ctx.obj['config']
    indexer = Indexer(config)

    try:
        sync_status = indexer.get_sync_status()

        click.echo("📊 Exposure Indexer Status")
        click.echo("=" * 40)
        click.echo(f"Last Ingested: {sync_status.get('last_ingested_height')}")
        click.echo(f"Next Height: {sync_status.get('next_height')}")
        click.echo(f"Node Height: {sync_status.get('node_height')}")
        click.echo(f"Blocks Behind: {sync_status.get('blocks_behind')}")
        if 'sync_progress' in sync_status:
            click.echo(f"Sync Progress: {sync_status['sync_progress']:.2f}%")

        click.echo("\n⚙️  Configuration")
        click.echo("=" * 40)
        click.echo(f"Transport: {config.bitcoin_transport}")
        click.echo(f"Start Height: {config.sync_start_height}")
        click.echo(f"Poll Interval: {config.sync_poll_interval}s")

    finally:
        indexer.close()


@cli.command()
@click.argument('address')
@click.pass_context
def address(ctx, address: str):
    """Show exposure details for one address."""
    config = ctx.obj['config']
    db_manager = DatabaseManager(config)

    try:
        record = db_manager.get_address(address)
        if record is None:
            click.echo(f"❌ Address {address} not found", err=True)
            sys.exit(1)
        click.echo(json.dumps(record, indent=2, default=str))
    finally:
        db_manager.close()


@cli.command()
@click.pass_context
def exposure_summary(ctx):
    """Show address and exposed-address counts per script type."""
    config = ctx.obj['config']
    db_manager = DatabaseManager(config)

    try:
        summary = db_manager.get_exposure_summary()

        click.echo(f"{'Script Type':<14} {'Addresses':>12} {'Exposed':>12}")
        click.echo("-" * 40)
        for row in summary:
            click.echo(f"{row['script_type']:<14} {row['address_count']:>12,} "
                       f"{row['exposed_count']:>12,}")
    finally:
        db_manager.close()


@cli.command()
@click.argument('script_hex')
@click.pass_context
def classify(ctx, script_hex: str):
    """Classify a hex-encoded output script."""
    config = ctx.obj['config']

    try:
        script = bytes.fromhex(script_hex)
    except ValueError:
        click.echo("❌ SCRIPT_HEX is not valid hex", err=True)
        sys.exit(1)

    classified = ScriptClassifier(hrp=config.address_hrp).classify(script)
    click.echo(json.dumps({
        'script_type': classified.script_type.value,
        'address': classified.address,
        'public_key': classified.public_key.hex() if classified.public_key else None,
        'exposes_public_key': classified.exposes_public_key,
        'extra_data': classified.extra_data,
    }, indent=2))


@cli.command()
def version():
    """Show version information."""
    click.echo(f"btc-exposure version {__version__}")


if __name__ == '__main__':
    cli()
