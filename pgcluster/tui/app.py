"""Main TUI application for cluster monitoring."""

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Vertical
from textual.timer import Timer
from textual.widgets import DataTable, Footer, Header, Static

from pgcluster.exceptions import PgClusterError
from pgcluster.logging_config import get_logger
from pgcluster.models import ClusterState

logger = get_logger(__name__)

STATUS_STYLES = {"success": "green", "failed": "red", "in-progress": "yellow"}


class ClusterTUI(App):
    """Terminal UI listing service instances, their nodes and member health."""

    CSS = """
    Screen {
        layout: vertical;
    }

    #main-container {
        height: 100%;
    }

    #instances-container {
        height: 40%;
        border: solid $primary;
        margin: 1;
    }

    #nodes-container {
        height: 35%;
        border: solid $primary;
        margin: 1;
    }

    #members-container {
        height: 25%;
        border: solid $primary;
        margin: 1;
    }

    DataTable {
        height: 100%;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit", priority=True),
        Binding("r", "refresh", "Refresh", priority=True),
        Binding("h", "help", "Help", priority=True),
        Binding("escape", "quit", "Quit", show=False),
    ]

    def __init__(self, broker=None, refresh_interval: int = 5):
        """Initialize the TUI.

        Args:
            broker: Broker whose state store and status aggregator are displayed
            refresh_interval: Auto-refresh interval in seconds
        """
        super().__init__()
        self.broker = broker
        self.refresh_interval = refresh_interval
        self._refresh_timer: Timer | None = None
        self._is_refreshing: bool = False
        self._connection_error: bool = False
        self._clusters: list[ClusterState] = []
        self._selected: str | None = None

    def compose(self) -> ComposeResult:
        """Compose the TUI layout."""
        yield Header(show_clock=True)
        with Vertical(id="main-container"):
            with Container(id="instances-container"):
                yield DataTable(id="instances-table", cursor_type="row")
            with Container(id="nodes-container"):
                yield DataTable(id="nodes-table", cursor_type="row")
            with Container(id="members-container"):
                yield Static("Select an instance", id="members-content")
        yield Footer()

    def on_mount(self) -> None:
        """Set up the TUI when mounted."""
        self.title = "PostgreSQL clusters"
        self.sub_title = "Press Q to quit, R to refresh, H for help"

        self.query_one("#instances-container").border_title = "Instances"
        self.query_one("#nodes-container").border_title = "Nodes"
        self.query_one("#members-container").border_title = "Members"

        instances_table = self.query_one("#instances-table", DataTable)
        instances_table.add_columns("Instance", "Nodes", "Port", "Status", "Progress", "Message")

        nodes_table = self.query_one("#nodes-table", DataTable)
        nodes_table.add_columns("Node", "Role", "Backend", "AZ")

        self._refresh_timer = self.set_interval(
            self.refresh_interval, self._auto_refresh, name="auto_refresh"
        )
        self.refresh_data()

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        """Show the nodes and members of the selected instance."""
        if event.data_table.id != "instances-table":
            return
        if 0 <= event.cursor_row < len(self._clusters):
            self._selected = self._clusters[event.cursor_row].instance_id
            self._update_details()

    def action_quit(self) -> None:
        """Quit the application."""
        if self._refresh_timer is not None:
            self._refresh_timer.stop()
        self.exit()

    def action_refresh(self) -> None:
        """Manually refresh the data."""
        self.refresh_data()

    def action_help(self) -> None:
        """Show help information."""
        help_text = (
            "Keyboard Shortcuts:\n"
            "  Q / ESC - Quit application\n"
            "  R - Manually refresh data\n"
            "  H - Show this help\n"
            "  ↑/↓ - Navigate tables\n"
            "  Enter - Show nodes and members of an instance\n\n"
            f"Auto-refresh: Every {self.refresh_interval} seconds"
        )
        self.notify(help_text, title="Help", timeout=10)

    def _auto_refresh(self) -> None:
        """Auto-refresh callback for timer."""
        self.refresh_data()

    def fetch_clusters(self) -> list[ClusterState] | None:
        """Load every instance snapshot; None when the store is unreachable."""
        if self.broker is None:
            logger.debug("No broker configured, nothing to display")
            return None

        clusters = []
        try:
            for instance_id in self.broker.state_store.list_clusters():
                try:
                    clusters.append(self.broker.state_store.load_cluster(instance_id))
                except PgClusterError as e:
                    logger.warning(f"Skipping unreadable instance {instance_id}: {e.message}")
        except PgClusterError as e:
            logger.warning(f"Store error fetching instances: {e.message}")
            return None
        return clusters

    def refresh_data(self) -> None:
        """Refresh instance data from the shared store."""
        if self._is_refreshing:
            logger.debug("Refresh already in progress, skipping")
            return

        self._is_refreshing = True
        try:
            self._show_loading(True)
            clusters = self.fetch_clusters()
            if clusters is None:
                self._handle_connection_error()
                return

            self._clusters = clusters
            self._update_instances()
            self._update_details()
            if self._connection_error:
                self._connection_error = False
                self.notify("Connection restored", severity="information")
        finally:
            self._show_loading(False)
            self._is_refreshing = False

    def _update_instances(self) -> None:
        table = self.query_one("#instances-table", DataTable)
        table.clear()
        for cluster in self._clusters:
            info = cluster.scheduling_info
            table.add_row(
                cluster.instance_id,
                str(cluster.node_count()),
                str(cluster.allocated_port),
                Text(info.status, style=STATUS_STYLES.get(info.status, "dim")),
                f"{info.completed_steps}/{info.steps}",
                info.last_message,
            )

    def _update_details(self) -> None:
        cluster = next((c for c in self._clusters if c.instance_id == self._selected), None)
        nodes_table = self.query_one("#nodes-table", DataTable)
        nodes_table.clear()
        members = self.query_one("#members-content", Static)

        if cluster is None:
            members.update("Select an instance")
            return

        for node in cluster.nodes:
            backend = self.broker.backends.get(node.backend_id)
            az = backend.availability_zone if backend else Text("unknown", style="red")
            nodes_table.add_row(node.id, node.role, node.backend_id, az)

        try:
            summary, all_running = self.broker.status.member_status(cluster.instance_id)
            style = "green" if all_running else "yellow"
            members.update(Text(summary, style=style))
        except PgClusterError as e:
            members.update(Text(e.message, style="dim"))

    def _handle_connection_error(self) -> None:
        """Handle store connection errors gracefully."""
        if not self._connection_error:
            self._connection_error = True
            self.notify(
                "Unable to read the shared store. "
                "Displaying last known state. "
                "Will retry automatically.",
                title="Connection Error",
                severity="warning",
                timeout=10,
            )
            logger.warning("Shared store connection error")

    def _show_loading(self, show: bool) -> None:
        """Show or hide loading indicator."""
        if show:
            self.sub_title = "Loading... | Press Q to quit, R to refresh, H for help"
        else:
            self.sub_title = "Press Q to quit, R to refresh, H for help"
