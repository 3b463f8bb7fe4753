"""Configuration Commands - CLI settings management"""

import typer
from rich.console import Console
from rich.prompt import Confirm

from ..utils.config_manager import config
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="config", help="CLI configuration management")


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Configuration key (e.g., 'api.base_url')"),
    value: str = typer.Argument(..., help="Configuration value"),
):
    """⚙️ Set a configuration value"""
    if key == "api.base_url" and not value.startswith(("http://", "https://")):
        print_error("API base URL must start with http:// or https://")
        raise typer.Exit(1)

    if key.endswith(".timeout") and not value.isdigit():
        print_error("Timeout values must be numeric (seconds)")
        raise typer.Exit(1)

    try:
        config.set(key, int(value) if value.isdigit() else value)
    except OSError as e:
        print_error(f"Failed to set configuration: {e}")
        raise typer.Exit(1) from None

    print_success(f"Set {key} = {value}")
    if key == "api.base_url":
        print_info("Test connection with: jobsctl status")


@app.command("get")
def get_config(key: str = typer.Argument(..., help="Configuration key")):
    """📋 Get a configuration value"""
    value = config.get(key)
    if value is None:
        console.print(f"[yellow]Key '{key}' not found[/yellow]")
        raise typer.Exit(1)
    console.print(f"[cyan]{key}[/cyan] = [yellow]{value}[/yellow]")


@app.command("show")
def show_all_config():
    """📊 Show all configuration settings"""
    console.print(f"[dim]Configuration file: {config.config_file}[/dim]")
    _display_config_section(config.load_config())


@app.command("reset")
def reset_config(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    """🔄 Reset configuration to defaults"""
    if not yes and not Confirm.ask("⚠️ This will reset ALL configuration to defaults. Continue?"):
        console.print("Configuration reset cancelled.")
        return
    config.reset()
    print_success("Configuration reset to defaults")


@app.command("dev-mode")
def setup_dev_mode(
    user_id: str = typer.Argument(..., help="User ID for dev authentication"),
    org_id: str = typer.Argument(..., help="Organization ID for dev authentication"),
    roles: str = typer.Option("admin", "--roles", help="Comma-separated roles"),
):
    """🔧 Configure dev mode authentication headers"""
    config.set("api.headers.X-User-ID", user_id)
    config.set("api.headers.X-Org-ID", org_id)
    config.set("api.headers.X-Roles", roles)
    print_success("Dev mode configured")
    console.print(f"  User ID: [cyan]{user_id}[/cyan]")
    console.print(f"  Org ID: [cyan]{org_id}[/cyan]")
    console.print(f"  Roles: [cyan]{roles}[/cyan]")
    console.print("\n💡 [dim]Make sure your server is running with AUTH_MODE=dev.[/dim]")


def _display_config_section(data, indent: int = 0):
    """Recursively display configuration sections"""
    indent_str = "  " * indent
    for key, value in data.items():
        if isinstance(value, dict):
            console.print(f"{indent_str}[bold blue]{key}:[/bold blue]")
            _display_config_section(value, indent + 1)
        else:
            console.print(f"{indent_str}[cyan]{key}[/cyan]: [yellow]{value}[/yellow]")
