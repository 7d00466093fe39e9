"""Command-line client: stream one query and render it in the terminal."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.console import Console

from textstream.config import StreamerConfig, load_config
from textstream.engine import stream_text_chunks
from textstream.errors import StreamCancelled, StreamError
from textstream.retry import RetryPolicy
from textstream.session import TextStreamer
from textstream.types import DeliveryMode, SessionState, TypingMode

console = Console()
err_console = Console(stderr=True)

EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


async def _run_session(config: StreamerConfig, query: str) -> int:
    def on_token(token: str) -> None:
        console.print(token, end="", markup=False, highlight=False, soft_wrap=True)

    def on_retry(attempt: int, delay_ms: float) -> None:
        err_console.print(f"[dim]Retry {attempt} in {delay_ms:.0f} ms...[/dim]")

    streamer = TextStreamer.from_config(config, on_token=on_token, on_retry=on_retry)
    try:
        await streamer.start(query)
        # aclose() forgets the error, so read the outcome first.
        status = streamer.snapshot()
    finally:
        await streamer.aclose()

    console.print()
    if status.state is SessionState.ERRORED:
        code = f" ({status.error_code})" if status.error_code else ""
        err_console.print(f"[red]Error: {status.error}{code}[/red]")
        return EXIT_ERROR
    if status.state is SessionState.CANCELLED:
        err_console.print(f"[yellow]{status.last_abort_reason}[/yellow]")
        return EXIT_INTERRUPTED
    return 0


async def _run_lazy(config: StreamerConfig, query: str) -> int:
    try:
        async for text in stream_text_chunks(
            config.endpoint, query, headers=config.headers, timeout=config.timeout,
        ):
            console.print(text, end="", markup=False, highlight=False, soft_wrap=True)
    except StreamCancelled:
        return EXIT_INTERRUPTED
    except StreamError as e:
        console.print()
        err_console.print(f"[red]Error: {e.message}[/red]")
        return EXIT_ERROR
    console.print()
    return 0


@click.command()
@click.argument("query")
@click.option("--url", "-u", default=None, help="Streaming endpoint URL")
@click.option("--config", "-c", "config_path", default=None,
              help="Path to textstream.yaml (auto-detected from CWD or ~/.config/textstream/)")
@click.option("--mode", "-m", type=click.Choice([m.value for m in DeliveryMode]),
              default=None, help="animated: paced tokens, stream: raw chunks")
@click.option("--typing", "-t", "typing_mode",
              type=click.Choice([m.value for m in TypingMode]),
              default=None, help="Token granularity for animated mode")
@click.option("--speed", "-s", type=float, default=None, help="Milliseconds between tokens")
@click.option("--max-attempts", type=int, default=None, help="Total attempts including the first")
@click.option("--lazy", is_flag=True, help="Print raw text increments without pacing or retries")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def main(query: str, url: str | None, config_path: str | None, mode: str | None,
         typing_mode: str | None, speed: float | None, max_attempts: int | None,
         lazy: bool, verbose: bool):
    """Stream QUERY from a text-streaming endpoint and render it."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    config = load_config(config_path)
    if url:
        config.endpoint = url
    if mode:
        config.mode = DeliveryMode(mode)
    if typing_mode:
        config.typing_mode = TypingMode(typing_mode)
    if speed is not None:
        config.speed_ms = speed
    if max_attempts is not None:
        try:
            config.retry = RetryPolicy(
                base_delay_ms=config.retry.base_delay_ms,
                max_delay_ms=config.retry.max_delay_ms,
                max_attempts=max_attempts,
            )
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--max-attempts") from e

    runner = _run_lazy if lazy else _run_session
    try:
        code = asyncio.run(runner(config, query))
    except KeyboardInterrupt:
        # asyncio.run cancels the main task, which cancels the session.
        console.print()
        err_console.print("[yellow]Cancelled[/yellow]")
        code = EXIT_INTERRUPTED
    sys.exit(code)


if __name__ == "__main__":
    main()
