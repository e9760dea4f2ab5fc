import click

from .config import DEFAULT_HOST, DEFAULT_READ_SIZE, Config
from .log import LOG_LEVELS, configure_logging
from .server import Server


@click.command(context_settings={"auto_envvar_prefix": "ECHOSERVER"})
@click.option("--host", type=str, default=DEFAULT_HOST, show_default=True,
              help="Bind socket to this IPv4 address.")
@click.option("--port", type=int, default=9001, show_default=True,
              help="Bind socket to this port. If 0, an available port will be picked.")
@click.option("--backlog", type=click.IntRange(min=0), default=None,
              help="Maximum number of connections to hold in backlog. Defaults to the OS limit.")
@click.option("--read-size", type=click.IntRange(min=1), default=DEFAULT_READ_SIZE, show_default=True,
              help="Size of the buffer allocated for each read.")
@click.option("--max-buffered-bytes", type=click.IntRange(min=1), default=None,
              help="Cap on memory held by buffers not yet echoed. Connections that hit it are closed.")
@click.option("--timeout-graceful-shutdown", type=float, default=None,
              help="Maximum number of seconds to wait for connections to close on shutdown.")
@click.option("--log-level", type=click.Choice(list(LOG_LEVELS.keys())), default="info", show_default=True,
              help="Log level.")
def main(host: str,
         port: int,
         backlog: int | None,
         read_size: int,
         max_buffered_bytes: int | None,
         timeout_graceful_shutdown: float | None,
         log_level: str) -> None:
    """Run a TCP server that echoes back every byte it receives."""
    config = Config(
        host=host,
        port=port,
        backlog=backlog,
        read_size=read_size,
        max_buffered_bytes=max_buffered_bytes,
        timeout_graceful_shutdown=timeout_graceful_shutdown,
        log_level=log_level,
    )
    configure_logging(config.log_level)
    Server(config).run()


if __name__ == "__main__":
    main()
