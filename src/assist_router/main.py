"""CLI entrypoint for assist-router."""

import logging
import sys
from pathlib import Path

import rich_click as click

from assist_router import __version__
from assist_router.controllers import (
    PRICING_UNITS,
    CostCommand,
    RouterCliController,
    RunCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = RouterCliController()


@click.group()
@click.version_option(version=__version__, prog_name="assist-router")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def assist_router(verbose: bool) -> None:
    """Run coding-assistance requests through local, API, or devserver providers."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@assist_router.command("run")
@click.argument("prompt")
@click.option(
    "--providers-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="JSON file with a list of provider descriptors.",
)
@click.option("--name", default=None, help="Provider name (selects from --providers-file).")
@click.option(
    "--kind",
    type=click.Choice(["local", "remoteApi", "devserver"]),
    default=None,
    help="Provider kind when not using --providers-file.",
)
@click.option("--command", "tool_command", default=None, help="Local tool executable.")
@click.option(
    "--arg",
    "tool_args",
    multiple=True,
    help="Fixed argument for the local tool. Can be repeated.",
)
@click.option("--base-url", default=None, help="Chat-completion API base URL.")
@click.option("--model", default=None, help="Model name for the API provider.")
@click.option("--devserver-url", default=None, help="Devserver base URL.")
@click.option(
    "--output-schema",
    "output_schema_file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="JSON schema file for structured output.",
)
@click.option("--sandbox", default=None, help="Sandbox mode passed to local tools.")
@click.option(
    "--cwd",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Working directory for local tools.",
)
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=1),
    default=None,
    help="Wall-clock timeout for local tools.",
)
def run(  # noqa: PLR0913
    prompt: str,
    providers_file: Path | None,
    name: str | None,
    kind: str | None,
    tool_command: str | None,
    tool_args: tuple[str, ...],
    base_url: str | None,
    model: str | None,
    devserver_url: str | None,
    output_schema_file: Path | None,
    sandbox: str | None,
    cwd: Path | None,
    timeout_ms: int | None,
) -> None:
    """Run one prompt and print the normalized result as JSON."""

    result = CONTROLLER.run(
        RunCommand(
            prompt=prompt,
            providers_file=providers_file,
            name=name,
            kind=kind,
            command=tool_command,
            args=tool_args,
            base_url=base_url,
            model=model,
            devserver_url=devserver_url,
            output_schema_file=output_schema_file,
            sandbox=sandbox,
            cwd=cwd,
            timeout_ms=timeout_ms,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Provider run failed.")


@assist_router.command("parse")
def parse() -> None:
    """Extract structured JSON from text on stdin."""

    result = CONTROLLER.parse(sys.stdin.read())
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("No structured output found.")


@assist_router.command("cost")
@click.option("--input-tokens", type=click.IntRange(min=0), default=None)
@click.option("--output-tokens", type=click.IntRange(min=0), default=None)
@click.option(
    "--total-tokens",
    type=click.IntRange(min=0),
    default=None,
    help="Aggregate count, split 50/50 between input and output.",
)
@click.option("--price-input", type=float, required=True, help="Input price per unit.")
@click.option("--price-output", type=float, required=True, help="Output price per unit.")
@click.option(
    "--unit",
    type=click.Choice(sorted(PRICING_UNITS)),
    default="1m",
    show_default=True,
    help="Token unit the prices are quoted in.",
)
def cost(  # noqa: PLR0913
    input_tokens: int | None,
    output_tokens: int | None,
    total_tokens: int | None,
    price_input: float,
    price_output: float,
    unit: str,
) -> None:
    """Calculate cost for a token count and pricing."""

    result = CONTROLLER.cost(
        CostCommand(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
            price_input=price_input,
            price_output=price_output,
            unit=unit,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Cost calculation failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    assist_router()
