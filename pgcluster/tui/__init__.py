"""TUI module for cluster monitoring."""

from pgcluster.tui.app import ClusterTUI

__all__ = ["ClusterTUI", "main"]


def main() -> None:
    """Main entry point for the cluster TUI."""
    import os

    from pgcluster.broker import Broker
    from pgcluster.config import BrokerConfig
    from pgcluster.exceptions import PgClusterError

    broker = None
    try:
        config = BrokerConfig.load(os.environ.get("PGCLUSTER_CONFIG", "pgcluster.yml"))
        broker = Broker.from_config(config)
    except PgClusterError as e:
        print(f"Configuration error: {e}")

    app = ClusterTUI(broker=broker)
    app.run()
