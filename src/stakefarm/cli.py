"""
stakefarm/cli.py

Command line interface for a persisted farming ledger.

Run with: stakefarm --help  (or python -m stakefarm.cli)
"""

import json
import logging
import os
from typing import Any, Optional

import click
import trio

from .config import DEFAULT_API_HOST, DEFAULT_API_PORT, SECONDS_PER_DAY, EngineConfig
from .errors import StakingError
from .farming import FarmingEngine, load_engine, save_engine

logger = logging.getLogger("stakefarm.cli")


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2))


def state_option(f):
    """Click option decorator for the --state file shared by every command."""
    return click.option(
        "--state",
        "state_path",
        type=click.Path(dir_okay=False),
        required=True,
        envvar="STAKEFARM_STATE",
        help="Path of the JSON ledger state file",
    )(f)


def _load(state_path: str) -> FarmingEngine:
    try:
        return load_engine(state_path)
    except FileNotFoundError:
        raise click.ClickException(f"State file not found: {state_path}")
    except (KeyError, ValueError) as e:
        raise click.ClickException(f"Invalid state file {state_path}: {e}")


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Logging verbosity",
)
def main(log_level: str) -> None:
    """Multi-pool staking ledger tools."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )


@main.command()
@state_option
@click.option("--owner", required=True, help="Owner address of the new ledger")
@click.option("--deployment-time", type=int, default=None, help="Campaign start (unix seconds, default now)")
@click.option("--staking-days", type=click.IntRange(min=1), default=None, help="Campaign length in days")
@click.option("--stake-multiplier", type=click.IntRange(min=1), default=None, help="Early-stake multiplier")
@click.option("--referral-percents", default=None, help="Comma separated percents, nearest upline first")
@click.option("--force", is_flag=True, help="Overwrite an existing state file")
def init(
    state_path: str,
    owner: str,
    deployment_time: Optional[int],
    staking_days: Optional[int],
    stake_multiplier: Optional[int],
    referral_percents: Optional[str],
    force: bool,
) -> None:
    """Create an empty ledger state file."""
    if os.path.exists(state_path) and not force:
        raise click.ClickException(f"{state_path} exists (use --force to overwrite)")

    config = EngineConfig.from_env()
    if staking_days is not None:
        config.staking_duration = staking_days * SECONDS_PER_DAY
    if stake_multiplier is not None:
        config.stake_multiplier = stake_multiplier
    if referral_percents:
        try:
            percents = [int(p) for p in referral_percents.split(",")]
        except ValueError:
            raise click.BadParameter(referral_percents, param_hint="--referral-percents")
        if min(percents) < 0 or sum(percents) > 100:
            raise click.BadParameter(referral_percents, param_hint="--referral-percents")
        config.referral_percents = percents

    clock = (lambda: deployment_time) if deployment_time is not None else None
    try:
        engine = FarmingEngine.create(owner, config=config, clock=clock)
    except ValueError as e:
        raise click.ClickException(str(e))

    save_engine(engine, state_path)
    click.echo(f"Created ledger state {state_path} (campaign ends {engine.pool_end_time()})")


@main.command()
@state_option
@click.option("--host", default=DEFAULT_API_HOST, show_default=True)
@click.option("--port", type=int, default=DEFAULT_API_PORT, show_default=True)
@click.option("--no-metrics", is_flag=True, help="Disable the /metrics endpoint")
def serve(state_path: str, host: str, port: int, no_metrics: bool) -> None:
    """Serve the read-only REST API over a ledger state file."""
    from .api import FarmingAPI

    engine = _load(state_path)
    api = FarmingAPI(engine, host=host, port=port, enable_metrics=not no_metrics)
    try:
        trio.run(api.start)
    except KeyboardInterrupt:
        logger.info("API server stopped")


@main.command()
@state_option
@click.argument("token", required=False)
def pool(state_path: str, token: Optional[str]) -> None:
    """Show one pool, or all pools when TOKEN is omitted."""
    engine = _load(state_path)
    try:
        if token:
            _echo_json(engine.pools(token).to_dict())
        else:
            _echo_json([engine.pools(t).to_dict() for t in engine.pool_ids()])
    except StakingError as e:
        raise click.ClickException(e.message)


@main.command()
@state_option
@click.argument("token")
@click.option("--at", type=int, default=None, help="Evaluate at this unix time")
def penalty(state_path: str, token: str, at: Optional[int]) -> None:
    """Show the current early-exit penalty of a pool."""
    engine = _load(state_path)
    try:
        _echo_json(engine.get_pool_penalty_info(token, at=at).to_dict())
    except StakingError as e:
        raise click.ClickException(e.message)


@main.command()
@state_option
@click.argument("owner")
@click.option("--offset", type=click.IntRange(min=0), default=0)
@click.option("--limit", type=click.IntRange(min=0), default=0, help="0 for all")
def stakes(state_path: str, owner: str, offset: int, limit: int) -> None:
    """List an owner's stakes."""
    engine = _load(state_path)
    _echo_json(engine.view_staking_details(owner, offset=offset, limit=limit).to_dict())


@main.command()
@state_option
@click.argument("owner")
@click.argument("stake_id", type=int)
@click.option("--at", type=int, default=None, help="Evaluate at this unix time")
@click.option("--apply-penalty", is_flag=True, help="Deduct the current early-exit penalty")
def rewards(state_path: str, owner: str, stake_id: int, at: Optional[int], apply_penalty: bool) -> None:
    """Show the claimable rewards of one stake."""
    engine = _load(state_path)
    try:
        stake = engine.get_stake(owner, stake_id)
        amounts = engine.get_stake_rewards(owner, stake_id, apply_penalty=apply_penalty, at=at)
    except StakingError as e:
        raise click.ClickException(e.message)

    reward_tokens = engine.pools(stake.pool_id).reward_tokens
    _echo_json(dict(zip(reward_tokens, amounts)))


@main.command()
@state_option
@click.argument("address")
def user(state_path: str, address: str) -> None:
    """Show an address's referral record."""
    engine = _load(state_path)
    _echo_json(engine.users(address).to_dict())


if __name__ == "__main__":
    main()
