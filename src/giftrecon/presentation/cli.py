import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.parquet_export import export_stream_to_parquet
from ..config import get_settings
from .runtime import open_runtime

app = typer.Typer(help="giftrecon: chain event reconciliation and roll-up materialization.")
console = Console()
err_console = Console(stderr=True)


@app.callback()
def main(log_level: Optional[str] = typer.Option(None, help="Overrides LOG_LEVEL")):
    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(
        level=level, format="%(message)s", datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
    )


@app.command()
def reconcile(from_block: Optional[int] = typer.Option(None, "--from-block", help="Override the watermark")):
    """Run one reconciliation pass against the configured chain."""
    settings = get_settings()

    async def run():
        async with open_runtime(settings) as rt:
            return await rt.reconciler.run_with_budget(from_block)

    res = asyncio.run(run())
    console.print_json(data=res.to_response())
    if res.failed_event_types:
        raise typer.Exit(code=2)


@app.command()
def materialize():
    """Recompute roll-ups from the trailing stream window."""
    settings = get_settings()

    async def run():
        async with open_runtime(settings) as rt:
            return await rt.materializer.run_with_budget()

    console.print_json(data=asyncio.run(run()).to_response())


@app.command()
def status():
    """Show the watermark, last materialization and the global roll-up."""
    settings = get_settings()

    async def run():
        async with open_runtime(settings) as rt:
            return (
                await rt.store.get_watermark(),
                await rt.store.get_meta("materialization:lastRun"),
                await rt.store.get_rollup("rollup:global"),
            )

    watermark, last_run, global_rollup = asyncio.run(run())
    console.print(f"[bold]watermark[/]: {watermark:,}   [bold]last materialization[/]: {last_run or '-'}")
    if not global_rollup:
        console.print("[yellow]no global roll-up yet[/]")
        return
    table = Table(title="rollup:global")
    table.add_column("field"); table.add_column("value", justify="right")
    for k in sorted(global_rollup):
        table.add_row(k, global_rollup[k])
    console.print(table)


@app.command()
def export(out_dir: str, batch: int = typer.Option(1_000, help="Stream entries per Parquet file")):
    """Archive the whole canonical event stream to Parquet files."""
    settings = get_settings()

    async def run():
        async with open_runtime(settings) as rt:
            return await export_stream_to_parquet(rt.store, out_dir, batch=batch)

    written = asyncio.run(run())
    console.print(f"[bold]done[/]: {len(written)} file(s) → {out_dir}")


@app.command()
def serve(host: str = "0.0.0.0", port: int = 8000):
    """Serve the HTTP triggers with uvicorn."""
    import uvicorn
    from .http import create_app
    uvicorn.run(create_app(get_settings()), host=host, port=port)


if __name__ == "__main__":
    app()
