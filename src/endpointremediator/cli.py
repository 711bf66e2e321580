import logging
import os

import click
import yaml
from rich.logging import RichHandler

from .constants import DEFAULT_CONFIG_FILE
from .core import EndpointRemediator
from .errors import RemediationError
from .models import FolderPolicy, RunConfiguration
from .services.config_loader import ConfigLoader


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


def _parse_recipe_options(pairs):
    options = {}
    for pair in pairs:
        key, separator, raw_value = pair.partition("=")
        if not separator or not key.strip():
            raise click.BadParameter(f"Expected KEY=VALUE, got '{pair}'.", param_hint="--option")
        try:
            options[key.strip()] = yaml.safe_load(raw_value) if raw_value else ""
        except yaml.YAMLError:
            options[key.strip()] = raw_value
    return options


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.command()
@click.option(
    "--recipe",
    required=False,
    type=click.Choice(EndpointRemediator.RECIPE_NAMES),
    help="Built-in remediation recipe to run.",
)
@click.option("--plan", required=False, type=click.Path(), help="YAML plan file describing custom steps.")
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option(
    "--option",
    "recipe_option",
    multiple=True,
    help="Recipe option as KEY=VALUE (repeatable). Overrides recipe_options from config.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=None,
    help="Report what each step would do without changing the machine.",
)
@click.option("--backup-path", required=False, type=click.Path(), help="Root folder for backups.")
@click.option("--no-backup", is_flag=True, default=None, help="Skip backup steps.")
@click.option("--no-reboot", is_flag=True, default=None, help="Never schedule a restart.")
@click.option("--silent", is_flag=True, default=None, help="Only show warnings and errors on the console.")
@click.option(
    "--folder-policy",
    required=False,
    type=click.Choice([policy.value for policy in FolderPolicy]),
    help="What to do with leftover folders and caches (default: none).",
)
@click.option("--log-dir", required=False, type=click.Path(), help="Directory for the session log.")
@click.option("--report-file", required=False, type=click.Path(), help="Path for the JSON run record.")
@click.option("--critical", "critical_steps", multiple=True, help="Mark a step as critical (repeatable).")
@click.option(
    "--non-critical",
    "non_critical_steps",
    multiple=True,
    help="Mark a step as non-critical (repeatable).",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
def main(
    recipe,
    plan,
    config,
    recipe_option,
    dry_run,
    backup_path,
    no_backup,
    no_reboot,
    silent,
    folder_policy,
    log_dir,
    report_file,
    critical_steps,
    non_critical_steps,
    verbose,
):
    """Run idempotent remediation steps on a Windows endpoint."""
    logger = logging.getLogger("endpointremediator")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except RemediationError as exc:
        raise click.ClickException(str(exc)) from exc

    recipe = _resolve_option(recipe, config_values, "recipe")
    plan = _resolve_option(plan, config_values, "plan")
    dry_run = bool(_resolve_option(dry_run, config_values, "dry_run", default=False))
    backup_path = _resolve_option(backup_path, config_values, "backup_path")
    no_backup = bool(_resolve_option(no_backup, config_values, "no_backup", default=False))
    no_reboot = bool(_resolve_option(no_reboot, config_values, "no_reboot", default=False))
    silent = bool(_resolve_option(silent, config_values, "silent", default=False))
    folder_policy = str(_resolve_option(folder_policy, config_values, "folder_policy", default="none"))
    log_dir = _resolve_option(log_dir, config_values, "log_dir")
    report_file = _resolve_option(report_file, config_values, "report_file")
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))

    try:
        policy = FolderPolicy(folder_policy.lower())
    except ValueError as exc:
        raise click.ClickException(f"Invalid folder_policy '{folder_policy}'. Use none, delete or rename.") from exc

    overrides = {str(name): bool(value) for name, value in config_values.get("criticality_overrides", {}).items()}
    overrides.update({name: True for name in critical_steps})
    overrides.update({name: False for name in non_critical_steps})
    conflicting = sorted(set(critical_steps) & set(non_critical_steps))
    if conflicting:
        raise click.ClickException(f"Steps marked both critical and non-critical: {', '.join(conflicting)}")

    recipe_options = dict(config_values.get("recipe_options", {}))
    recipe_options.update(_parse_recipe_options(recipe_option))

    if not recipe and not plan:
        raise click.ClickException("Missing required option '--recipe' or '--plan' (or provide one in config).")
    if recipe and plan:
        raise click.ClickException("Options '--recipe' and '--plan' are mutually exclusive.")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    try:
        remediator = EndpointRemediator(
            config=RunConfiguration(
                dry_run=dry_run,
                silent=silent,
                backup_path=backup_path,
                no_backup=no_backup,
                no_reboot=no_reboot,
                folder_policy=policy,
                criticality_overrides=overrides,
                recipe_options=recipe_options,
                log_dir=log_dir,
            ),
            recipe=recipe,
            plan=plan,
            report_file=report_file,
        )
    except RemediationError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(remediator.run())


if __name__ == "__main__":
    main()
