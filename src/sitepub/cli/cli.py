"""CLI entrypoint: Typer app definition and command registration"""

import typer

from sitepub.cli.commands import build_cmd, cache_cmd, graph_cmd


app = typer.Typer(name="sitepub", no_args_is_help=True, help="Incremental static-site publishing pipeline")

app.command(name="build")(build_cmd)
app.command(name="graph")(graph_cmd)
app.command(name="cache")(cache_cmd)
