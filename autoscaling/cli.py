"""
Command-line interface for the auto-scaler using Typer
"""
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .config import (
    AutoScalingConfig, ConfigError, create_default_config_file, load_config_with_env_override
)
from .logger import ScalingLogger, configure_logging
from .models import ScalingEvent
from .registry import InvalidRuleConfigurationError
from .scalers import SimulatedResourceScaler
from .service import AutoScalingService
from .simulation import ManualClock, load_scenario, run_simulation

app = typer.Typer(
    name="autoscaler",
    help="Rule-driven auto-scaling control loop for resource pools",
    no_args_is_help=True,
)


def _console(debug: bool = False) -> ScalingLogger:
    # Built per command so output goes to the stdout of this invocation
    return ScalingLogger(debug=debug, verbose=True)


def _load_config(config: Optional[Path]) -> AutoScalingConfig:
    return load_config_with_env_override(config)


def _describe(event: ScalingEvent) -> str:
    outcome = "ok" if event.success else f"FAILED ({event.error})"
    return (f"{event.timestamp:%H:%M:%S} {event.resource_pool}: {event.action.value} "
            f"{event.before_instances} -> {event.after_instances} [{event.reason}] {outcome}")


@app.command("init-config")
def init_config(
    path: Annotated[Path, typer.Argument(help="Where to write the configuration file")],
    force: Annotated[bool, typer.Option("--force", help="Overwrite an existing file")] = False,
):
    """Write a default configuration file"""
    logger = _console()

    if path.exists() and not force:
        logger.error(f"{path} already exists (use --force to overwrite)")
        raise typer.Exit(1)

    try:
        create_default_config_file(path)
    except ConfigError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    logger.success(f"Default configuration written to {path}")


@app.command("show-config")
def show_config(
    config: Annotated[Optional[Path], typer.Option("--config", "-c", help="Configuration file")] = None,
):
    """Show the effective configuration (file plus AUTOSCALER_* overrides)"""
    logger = _console()

    try:
        effective = _load_config(config)
    except ConfigError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    logger.info(f"Enabled: {effective.enabled}")
    logger.info(f"Evaluation interval: {effective.evaluation_interval_seconds:.0f}s")
    logger.info(f"Metrics retention: {effective.metrics_retention_seconds:.0f}s")
    logger.info(f"Default cooldown: {effective.default_cooldown_seconds:.0f}s")
    logger.info(f"Max scaling events/hour: {effective.max_scaling_events_per_hour}")
    logger.info(f"Predictive scaling: {effective.enable_predictive_scaling}")
    emergency = effective.emergency
    logger.info(f"Emergency: enabled={emergency.enabled} cpu>{emergency.cpu_threshold} "
                f"memory>{emergency.memory_threshold} response_time>{emergency.response_time_threshold}ms "
                f"ceiling={emergency.max_instances}")
    logger.info("Initial instances:")
    for pool, count in effective.initial_instances.items():
        logger.info(f"   {pool}: {count}")
    logger.info(f"Configured rules: {len(effective.rules)} "
                f"(stock rules {'on' if effective.load_default_rules else 'off'})")


@app.command()
def simulate(
    scenario: Annotated[Path, typer.Argument(help="YAML scenario with a 'ticks' list")],
    config: Annotated[Optional[Path], typer.Option("--config", "-c", help="Configuration file")] = None,
    ticks: Annotated[Optional[int], typer.Option("--ticks", "-n", help="Number of ticks to run")] = None,
    default_rules: Annotated[bool, typer.Option("--default-rules", help="Install the stock rules")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show detailed information")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Enable debug logging")] = False,
):
    """Replay a metrics scenario through the control loop"""
    logger = _console(debug)

    try:
        effective = _load_config(config)
        if default_rules:
            effective.load_default_rules = True
        if debug or verbose or effective.logging.debug:
            configure_logging(effective.logging.log_level, debug=debug or effective.logging.debug)

        scenario_ticks = load_scenario(scenario)
        clock = ManualClock()
        service = AutoScalingService(effective, scaler=SimulatedResourceScaler(), clock=clock)
    except (ConfigError, InvalidRuleConfigurationError, ValueError, TypeError) as e:
        logger.error(str(e))
        raise typer.Exit(1)

    with service:
        logger.info(f"Replaying {ticks or len(scenario_ticks)} tick(s) with "
                    f"{len(service.list_rules())} rule(s)")

        results = run_simulation(service, scenario_ticks, clock, tick_count=ticks)

        for i, result in enumerate(results):
            if result.rate_limited:
                logger.warning(f"Tick {i}: rule evaluation skipped (hourly limit reached)")
            for event in result.events:
                if event.is_emergency:
                    logger.emergency(f"Tick {i}: {_describe(event)}")
                else:
                    logger.scaling(f"Tick {i}: {_describe(event)}")

        logger.info("Final resource status:")
        for pool, status in service.get_resource_status().items():
            logger.info(f"   {pool}: {status['instances']} instance(s)")

        total = len(service.get_scaling_events())
        logger.success(f"Simulation finished: {total} scaling event(s)")


@app.command()
def predict(
    pool: Annotated[str, typer.Argument(help="Resource pool to forecast")],
    scenario: Annotated[Path, typer.Argument(help="YAML scenario providing the metric history")],
    horizon: Annotated[float, typer.Option("--horizon", help="Forecast horizon in minutes")] = 60.0,
    config: Annotated[Optional[Path], typer.Option("--config", "-c", help="Configuration file")] = None,
):
    """Forecast load for a pool from a scenario's metric history"""
    logger = _console()

    try:
        effective = _load_config(config)
        effective.enabled = False
        scenario_ticks = load_scenario(scenario)
        clock = ManualClock()
        service = AutoScalingService(effective, clock=clock)
    except (ConfigError, InvalidRuleConfigurationError, ValueError, TypeError) as e:
        logger.error(str(e))
        raise typer.Exit(1)

    with service:
        run_simulation(service, scenario_ticks, clock)
        prediction = service.get_prediction(pool, horizon)

        logger.info(f"📊 Prediction for {prediction.resource_pool} over {horizon:.0f} min:")
        logger.info(f"   Predicted load: {prediction.predicted_load:.1f}%")
        logger.info(f"   Recommended instances: {prediction.recommended_instances} "
                    f"(current {service.get_instances(pool)})")
        logger.info(f"   Confidence: {prediction.confidence:.2f}")
        logger.info(f"   Factors: {', '.join(prediction.factors)}")
        logger.info(f"   Estimated cost: ${prediction.estimated_cost:.2f}")


def main():
    """Main entry point for the CLI"""
    app()


if __name__ == "__main__":
    main()
