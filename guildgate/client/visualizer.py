"""
MODULE OVERVIEW:
The Rich terminal dashboard for a running bot.

WHAT IS HAPPENING HERE:
The session manager keeps a small status record per shard. This view polls
those records four times a second and renders them next to a feed of the
last dispatched events, so an operator can watch shards resume, re-identify
and back off without reading logs.
"""

from collections import deque
from datetime import datetime
import asyncio

from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from guildgate.client.session_manager import SessionManager
from guildgate.shared.codec import Envelope

STATE_COLORS = {
    "listening": "green",
    "connecting": "yellow",
    "handshaking": "yellow",
    "pending": "blue",
    "terminated": "red",
}


class Visualizer:
    def __init__(self, manager: SessionManager):
        self.manager = manager
        self.recent_events = deque(maxlen=10)

    def on_event(self, envelope: Envelope, summary: str):
        ts = datetime.now().strftime("%H:%M:%S")
        summary = summary[:40] + "..." if len(summary) > 40 else summary
        self.recent_events.appendleft((ts, envelope.type or "-", str(envelope.seq), summary))

    def shard_table(self) -> Table:
        table = Table(title="Shards", expand=True)
        table.add_column("Shard", style="cyan", no_wrap=True)
        table.add_column("State")
        table.add_column("Session", style="magenta")
        table.add_column("Seq", justify="right")
        table.add_column("Launches", justify="right")
        table.add_column("Last Outcome")

        for _, stats in sorted(self.manager.stats.items()):
            color = STATE_COLORS.get(stats["state"], "white")
            table.add_row(
                stats["shard"],
                f"[{color}]{stats['state']}[/]",
                stats["session_id"] or "-",
                str(stats["last_seq"]),
                str(stats["launches"]),
                f"{stats['last_outcome'] or '-'} {stats['last_reason']}".strip(),
            )
        return table

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="shards"),
            Layout(name="feed"),
        )

        header = (
            f"Live: {self.manager.live_connections} | Pending: {self.manager.pending} | "
            f"Start interval: {self.manager.start_interval_s or '-'}s"
        )
        layout["header"].update(Panel(header, style="bold"))
        layout["shards"].update(Panel(self.shard_table()))

        feed = Table(title="Dispatched Events", expand=True)
        feed.add_column("Time", style="cyan", no_wrap=True)
        feed.add_column("Type", style="magenta")
        feed.add_column("Seq", justify="right")
        feed.add_column("Payload", style="green")
        for row in self.recent_events:
            feed.add_row(*row)
        layout["feed"].update(Panel(feed))

        return layout

    async def run(self, manager_task: asyncio.Task):
        with Live(self.generate_layout(), refresh_per_second=4) as live:
            while not manager_task.done():
                live.update(self.generate_layout())
                await asyncio.sleep(0.25)
