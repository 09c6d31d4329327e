import asyncio
from typing import Optional

import typer
from rich.console import Console

from ..config import Settings
from ..domain.errors import ConfigError, MetadataError
from ..domain.pricing import sqrt_price_x96_to_price
from ..logging_setup import configure_logging
from ..application.use_cases import resolve_pool_config, run_ingestion

app = typer.Typer(help="poolwatch: live Uniswap V3 swap price recorder.", no_args_is_help=True)
console = Console()

@app.command()
def watch(
    pool: Optional[str] = typer.Option(None, help="Pool address (default: POOL_ADDRESS or USDC/WETH 0.05%)"),
    sink: Optional[str] = typer.Option(None, help="csv | parquet"),
    output: Optional[str] = typer.Option(None, help="CSV file or Parquet directory"),
    batch_size: Optional[int] = typer.Option(None, help="Records per committed batch"),
    queue_capacity: Optional[int] = typer.Option(None, help="Hand-off buffer size"),
    reconnect_delay: Optional[float] = typer.Option(None, help="Seconds to wait before reconnecting"),
    decimal_shift: Optional[int] = typer.Option(None, help="decimals(token0) - decimals(token1); skips on-chain lookup"),
    log_level: Optional[str] = typer.Option(None, help="DEBUG | INFO | WARNING | ERROR"),
):
    """Subscribe to the pool's Swap events and record every trade until interrupted."""
    try:
        settings = Settings.from_env().with_overrides(
            pool_address=pool, sink=sink, output=output, batch_size=batch_size,
            queue_capacity=queue_capacity, reconnect_delay_s=reconnect_delay,
            decimal_shift=decimal_shift, log_level=log_level,
        )
    except ConfigError as e:
        console.print(f"[bold red]config error[/]: {e}")
        raise typer.Exit(code=1)

    configure_logging(settings.log_level)
    console.print(f"🦄 pool [bold]{settings.pool_address}[/] → {settings.sink}:{settings.output}")
    console.print(f"📡 {settings.rpc_url}")

    async def main():
        pool_cfg = await resolve_pool_config(settings)
        await run_ingestion(settings, pool=pool_cfg)

    try:
        asyncio.run(main())
    except MetadataError as e:
        console.print(f"[bold red]startup failed[/]: {e}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("[yellow]interrupted[/]; partial batch not committed")

@app.command()
def price(
    sqrt_price_x96: str = typer.Argument(..., help="sqrtPriceX96 as decimal or 0x-hex"),
    decimal_shift: int = typer.Option(-12, help="decimals(token0) - decimals(token1)"),
):
    """Convert a raw sqrtPriceX96 into a decimal price."""
    s = sqrt_price_x96.strip().lower()
    try:
        raw = int(s, 16) if s.startswith("0x") else int(s)
        p = sqrt_price_x96_to_price(raw, decimal_shift)
    except ValueError as e:
        console.print(f"[bold red]invalid sqrtPriceX96[/]: {e}")
        raise typer.Exit(code=1)
    typer.echo(str(p))

if __name__ == "__main__":
    app()
