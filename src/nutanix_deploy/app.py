"""
    Copyright 2024 Inmanta

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        http://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.

    Contact: code@inmanta.com
"""

import asyncio
import json
import logging
import shutil
from collections.abc import Coroutine
from typing import Any, List, Optional, TypeVar

import click
import texttable

from nutanix_deploy import config
from nutanix_deploy.config import Config
from nutanix_deploy.deploy import DependencyCycleException, Deployer, DeployResult
from nutanix_deploy.logging import setup_logging
from nutanix_deploy.output import Unknown
from nutanix_deploy.resources import ResourceException
from nutanix_deploy.stack import ProgramException
from nutanix_deploy.state import StateStore

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SECRET_MASK = "********"


def print_table(header: List[str], rows: List[List[str]], data_type: Optional[List[str]] = None) -> None:
    click.echo(get_table(header, rows, data_type))


def get_table(header: List[str], rows: List[List[str]], data_type: Optional[List[str]] = None) -> str:
    """
    Returns a table that would fit in the current terminal.
    """
    width, _ = shutil.get_terminal_size()

    table = texttable.Texttable(max_width=width)
    table.set_deco(texttable.Texttable.HEADER | texttable.Texttable.BORDER | texttable.Texttable.VLINES)
    if data_type is not None:
        table.set_cols_dtype(data_type)
    table.header(header)
    for row in rows:
        table.add_row(row)
    return table.draw()


def format_value(value: object) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, Unknown):
        return "(known after up)"
    return json.dumps(value, default=repr)


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a deployer operation and turn the errors of a program into a clean error message"""
    try:
        return asyncio.run(coro)
    except (ProgramException, ResourceException, DependencyCycleException) as e:
        LOGGER.debug("Operation failed", exc_info=True)
        raise click.ClickException(str(e))


def print_result(result: DeployResult) -> None:
    rows = [
        [r.id, r.action.value, r.status.value, r.change.value, r.message or ""]
        for r in result.resources
    ]
    if rows:
        print_table(["Resource", "Action", "Status", "Change", "Message"], rows)
    else:
        click.echo("No resources")

    for r in result.resources:
        if not r.changes:
            continue
        click.echo(f"{r.id}:")
        for field, change in r.changes.items():
            click.echo(f"    {field}: {format_value(change.current)} -> {format_value(change.desired)}")

    if result.outputs or result.failed_outputs:
        click.echo("Outputs:")
        output_rows = [[name, format_value(value)] for name, value in result.outputs.items()]
        output_rows.extend([name, f"failed: {reason}"] for name, reason in result.failed_outputs.items())
        print_table(["Name", "Value"], output_rows)


def check_result(result: DeployResult) -> None:
    if not result.success:
        raise click.ClickException(f"{result.action.value} of stack {result.stack} did not succeed for all resources")


@click.group(help="Deploy infrastructure on Nutanix with Python programs")
@click.option("-v", "--verbose", count=True, help="Log more, use -vv for debug output")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="Use this config file on top of the default configuration files",
)
@click.option("--log-file", type=click.Path(dir_okay=False, writable=True), help="Also write all logs to this file")
def app(verbose: int, config_file: Optional[str], log_file: Optional[str]) -> None:
    setup_logging(verbose, log_file)
    Config.load_config(config_file)


stack_option = click.option("--stack", "-s", help="The stack to work on, defaults to the deploy.stack option")


@app.command(help="Deploy the resources declared by PROGRAM and delete the ones it no longer declares")
@click.argument("program", type=click.Path(exists=True))
@stack_option
@click.option("--yes", "-y", is_flag=True, help="Do not show a preview and ask for confirmation")
def up(program: str, stack: Optional[str], yes: bool) -> None:
    if not yes:
        preview_result = run(Deployer(stack).preview(program))
        print_result(preview_result)
        check_result(preview_result)
        click.confirm("Do you want to perform this update?", abort=True)

    result = run(Deployer(stack).up(program))
    print_result(result)
    check_result(result)


@app.command(help="Show what up would change, without changing anything")
@click.argument("program", type=click.Path(exists=True))
@stack_option
def preview(program: str, stack: Optional[str]) -> None:
    result = run(Deployer(stack).preview(program))
    print_result(result)
    check_result(result)


@app.command(help="Delete all resources of a stack")
@stack_option
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def destroy(stack: Optional[str], yes: bool) -> None:
    deployer = Deployer(stack)
    if not yes:
        click.confirm(f"Do you want to delete all resources of stack {deployer.stack_name}?", abort=True)
    result = run(deployer.destroy())
    print_result(result)
    check_result(result)


@app.command(help="Show the outputs of the last deployment of a stack, or the value of output NAME")
@click.argument("name", required=False)
@stack_option
def output(name: Optional[str], stack: Optional[str]) -> None:
    stack_name = stack or config.stack_name.get()
    state = StateStore().load(stack_name)
    if name is None:
        print_table(["Name", "Value"], [[k, format_value(v)] for k, v in state.exports.items()])
        return
    if name not in state.exports:
        raise click.ClickException(f"Stack {stack_name} has no output {name}")
    click.echo(format_value(state.exports[name]))


@app.command(help="List the resources of the last deployment of a stack")
@stack_option
def resources(stack: Optional[str]) -> None:
    stack_name = stack or config.stack_name.get()
    state = StateStore().load(stack_name)
    print_table(
        ["Resource", "Remote id", "Protected"],
        [[r.id, r.remote_id or "", "yes" if r.protect else "no"] for r in state.resources],
    )


@app.command(help="List the stacks that have a state")
def stacks() -> None:
    for name in StateStore().list_stacks():
        click.echo(name)


@app.command(name="config", help="Show the effective configuration")
@click.option("--describe", "-d", is_flag=True, help="Also show the type, the default and the documentation of each option")
def show_config(describe: bool) -> None:
    header = ["Option", "Value", "Set"]
    if describe:
        header.extend(["Type", "Default", "Documentation"])
    rows = []
    for section, options in sorted(Config.get_config_options().items()):
        for name, option in sorted(options.items()):
            value = option.get()
            if option.secret and value is not None:
                shown = SECRET_MASK
            else:
                shown = "" if value is None else str(value)
            row = [f"{section}.{name}", shown, "yes" if option.is_set() else "no"]
            if describe:
                default = "" if option.default is None else option.get_default_desc()
                row.extend([option.get_type() or "", default, option.documentation])
            rows.append(row)
    print_table(header, rows, data_type=["t"] * len(header))


if __name__ == "__main__":
    app()
