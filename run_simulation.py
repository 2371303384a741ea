"""Example script to run a simulation programmatically."""

import logging
from rapsim.config import get_config
from rapsim.simulation import SimulationRunner

RESULTS_FILE = "market_results.json"

def main():
    """Run a short simulation."""
    app_config = get_config()
    config = app_config.simulation
    config.name = config.name or "RAP market - local run"
    config.description = config.description or "Agents trading against a local database"

    print("=" * 80)
    print(f"Running simulation: {config.name}")
    print(f"Description: {config.description}")
    print(f"Population: {config.population_size} agents, {config.target_online} online")
    print("=" * 80)

    runner = SimulationRunner(
        config,
        database_url=app_config.database_url,
        log_level=app_config.log_level,
        log_to_file=app_config.log_to_file
    )
    results = runner.run(num_ticks=60)
    runner.save_results(results, RESULTS_FILE)

    # Print summary
    print("\n" + "=" * 80)
    print("SIMULATION RESULTS")
    print("=" * 80)

    summary = results['summary']

    print(f"\nMarket Activity:")
    print(f"  Shop Purchases: {summary['total_purchases']}")
    print(f"  Resales: {summary['total_resales']}")
    print(f"  Resale Volume: R${summary['total_resale_volume']}")
    print(f"  Trades Accepted: {summary['total_trades']}")

    print(f"\nAgents:")
    for personality, count in summary['agents_by_personality'].items():
        print(f"  {personality}: {count}")

    print("\n" + "=" * 80)
    print(f"Detailed logs saved to: logs/market_*.log")
    print(f"Results saved to: {RESULTS_FILE}")
    print("=" * 80)

    return results


if __name__ == "__main__":
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    main()
