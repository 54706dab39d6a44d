"""Command-line interface for dms."""

import sys
from pathlib import Path

import click
import requests

from .config import DEFAULT_HTTP, DEFAULT_TTL, ActionConfig, ConfigError, DmsConfig
from .daemon import DeadMansSwitch, setup_logging
from .server import POSTPONE_PATH, SOURCE_PARAMETER


@click.group()
@click.version_option(package_name="dms")
def main():
    """A dead man's switch which invokes one or more actions unless postponed on regular intervals.

    To postpone the action(s), issue an HTTP PUT to /postpone, with no body,
    to the configured HTTP address.
    """
    pass


def _load_config(config_path):
    if config_path:
        return DmsConfig.from_yaml(config_path)
    return DmsConfig()


@main.command()
@click.option(
    "-c", "--config", "config_path",
    type=click.Path(exists=True),
    help="Path to configuration file (YAML)",
)
@click.option(
    "-e", "--exec", "commands",
    multiple=True,
    help="A command to execute when the switch triggers (repeatable)",
)
@click.option("-d", "--dir", "working_dir", help="The working directory for all commands")
@click.option("-h", "--http", help=f"The HTTP listen address or port [default: {DEFAULT_HTTP}]")
@click.option(
    "-t", "--ttl",
    help=f"The maximum interval for postpones to keep the switch open [default: {DEFAULT_TTL}]",
)
@click.option(
    "-m", "--misses",
    type=click.IntRange(min=0),
    help="The number of missed intervals tolerated before the switch triggers [default: 0]",
)
@click.option("--dry-run", is_flag=True, help="Dry-run mode (log actions instead of running them)")
@click.option("--debug", is_flag=True, help="Produce debug logging")
def run(config_path, commands, working_dir, http, ttl, misses, dry_run, debug):
    """Arm the switch and serve the postpone endpoint."""
    try:
        config = _load_config(config_path)
    except Exception as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)

    for command in commands:
        config.actions.append(ActionConfig(type="exec", command=command))
    if working_dir:
        config.dir = working_dir
    if http:
        config.http = http
    if ttl:
        config.ttl = ttl
    if misses is not None:
        config.misses = misses
    if dry_run:
        config.dry_run = True
    if debug:
        config.log_level = "DEBUG"

    errors = config.validate()
    if errors:
        click.echo("Configuration errors:", err=True)
        for error in errors:
            click.echo(f"  - {error}", err=True)
        sys.exit(1)

    setup_logging(config.log_level, config.log_file)

    try:
        daemon = DeadMansSwitch(config)
    except (ConfigError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    try:
        daemon.run()
    except OSError as e:
        click.echo(f"Error starting HTTP server: {e}", err=True)
        sys.exit(1)


@main.command()
@click.option(
    "-c", "--config", "config_path",
    type=click.Path(exists=True),
    required=True,
    help="Path to configuration file (YAML)",
)
def validate(config_path: str):
    """Validate configuration file."""
    try:
        config = DmsConfig.from_yaml(config_path)
        errors = config.validate()

        if errors:
            click.echo("❌ Configuration has errors:", err=True)
            for error in errors:
                click.echo(f"  - {error}", err=True)
            sys.exit(1)
        else:
            click.echo("✅ Configuration is valid")
            click.echo(f"\nTTL: {config.ttl} ({config.ttl_seconds}s)")
            click.echo(f"Misses tolerated: {config.misses}")
            click.echo(f"HTTP: {config.http}")
            click.echo(f"\nActions configured: {len(config.actions)}")
            for action in config.actions:
                status = "enabled" if action.enabled else "disabled"
                click.echo(f"  - {action.type} ({status})")

    except Exception as e:
        click.echo(f"❌ Error loading config: {e}", err=True)
        sys.exit(1)


@main.command()
@click.option(
    "-u", "--url",
    default=f"http://localhost:8080{POSTPONE_PATH}",
    show_default=True,
    help="The postpone endpoint",
)
@click.option("-s", "--source", default="", help="Identifies who is postponing")
@click.option("--timeout", default=10.0, show_default=True, help="Request timeout in seconds")
def postpone(url: str, source: str, timeout: float):
    """Postpone a running switch."""
    params = {SOURCE_PARAMETER: source} if source else None

    try:
        response = requests.put(url, params=params, timeout=timeout)
    except requests.RequestException as e:
        click.echo(f"❌ Postpone failed: {e}", err=True)
        sys.exit(1)

    if response.status_code == 200:
        click.echo("✅ Postponed")
    elif response.status_code == 503:
        click.echo("❌ Switch is not active", err=True)
        sys.exit(1)
    else:
        click.echo(f"❌ Unexpected response: {response.status_code} {response.text}", err=True)
        sys.exit(1)


@main.command()
@click.option("-o", "--output", type=click.Path(), help="Output file path")
def init(output: str):
    """Generate a sample configuration file."""
    sample_config = '''# dms configuration

# Switch settings
ttl: 1m          # interval to wait for a postpone (e.g. 30s, 5m, 1h30m)
misses: 0        # missed intervals tolerated before triggering
http: ":8080"    # listen address or port for PUT /postpone
dir: /opt/my-app # default working directory for exec actions

# Global settings
log_level: INFO
log_file: /var/log/dms.log
pid_file: /var/run/dms.pid

# Actions run in order when the switch triggers
actions:
  - type: exec
    command: systemctl stop my-app

  - type: kill
    enabled: false
    process_name: my-app
    signal: SIGKILL

  - type: webhook
    enabled: false
    url: https://your-webhook.com/alerts
    method: POST
    headers:
      Authorization: Bearer ${WEBHOOK_TOKEN}
'''

    if output:
        Path(output).write_text(sample_config)
        click.echo(f"✅ Sample config written to: {output}")
    else:
        click.echo(sample_config)


if __name__ == "__main__":
    main()
