import typer
import httpx
import os
import json
from typing import Optional, Dict, Any
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.box import ROUNDED
from rich.text import Text
from rich.prompt import Prompt
from serve import serve_app
from app.utils.key_encryption import CredentialCipher

# Initialize Rich console for pretty output
console = Console()

# Create CLI app
app = typer.Typer(help="Product Database Admin CLI")
db_app = typer.Typer(help="Manage product databases")
app.add_typer(db_app, name="db")

API_PREFIX = "/admin/product-databases"


# Configuration
class Config:
    api_url: str = os.environ.get("ADMIN_API_URL", "http://localhost:8020")
    api_key: Optional[str] = os.environ.get("ADMIN_API_KEY")

app_config = Config()


# Helper functions
def get_health_emoji(status):
    """Return emoji based on health status"""
    if status == "healthy":
        return ":green_circle:"
    elif status == "down":
        return ":red_circle:"
    return ":white_circle:"


def api_request(method: str, path: str, payload: Optional[Dict[str, Any]] = None, message: str = "Working..."):
    """Call the admin API and return the decoded body, exiting on HTTP errors."""
    headers = {"X-API-Key": app_config.api_key} if app_config.api_key else {}

    with Progress(
        SpinnerColumn(),
        TextColumn(f"[bold green]{message}"),
        console=console,
        transient=True
    ) as progress:
        progress.add_task("request", total=None)
        try:
            with httpx.Client(base_url=app_config.api_url, headers=headers, timeout=30.0) as client:
                response = client.request(method, f"{API_PREFIX}{path}", json=payload)
        except httpx.HTTPError as e:
            console.print(Panel(
                f"[bold red]Could not reach {app_config.api_url}:[/] {str(e)}",
                title="Connection Error",
                border_style="red"
            ))
            raise typer.Exit(code=1)

    try:
        body = response.json()
    except ValueError:
        body = {"detail": response.text}

    if response.is_error:
        detail = body.get("detail") or body.get("error", {}).get("message") or body
        console.print(Panel(
            f"[bold red]{response.status_code}:[/] {detail}",
            title="Request Failed",
            border_style="red"
        ))
        raise typer.Exit(code=1)

    return body


# Server command
@app.command()
def start(
    host: str = typer.Option("0.0.0.0", help="Host to bind the server to"),
    port: int = typer.Option(8020, help="Port to bind the server to"),
    reload: bool = typer.Option(False, help="Enable auto-reload")
):
    """Start the Product Database Admin API server."""
    console.print(Panel(
        f"Starting admin server on [bold cyan]{host}:{port}[/] {'with auto-reload' if reload else ''}",
        title="🗄️ Product Database Admin",
        border_style="green",
        expand=False
    ))

    serve_app(
        app="app.main:app",
        host=host,
        port=port,
        reload=reload,
    )


@db_app.command("list")
def list_databases_cmd(
    page: int = typer.Option(1, help="Page number", min=1),
    page_size: int = typer.Option(20, help="Items per page", min=1, max=100),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON")
):
    """List product database configurations."""
    data = api_request("GET", f"/?page={page}&size={page_size}", message="Fetching configurations...")

    if output_json:
        console.print_json(json.dumps(data))
        return

    configs = data.get("items", [])
    metadata = data.get("metadata", {})

    if not configs:
        console.print(Panel(
            "No product databases configured",
            title="Empty Result",
            border_style="yellow"
        ))
        return

    table = Table(
        title="🗄️ [bold]Product Databases[/]",
        box=ROUNDED,
        highlight=True,
        show_header=True,
        header_style="bold magenta",
        border_style="blue"
    )
    table.add_column("Product ID", style="dim", no_wrap=True)
    table.add_column("Product", style="green")
    table.add_column("Type", justify="center", style="cyan")
    table.add_column("Active", justify="center")
    table.add_column("Health", justify="center")

    for config in configs:
        health_status = (config.get("health_status") or "unknown").lower()
        table.add_row(
            str(config.get("product_id", "")),
            config.get("product_name") or "",
            config.get("db_type", ""),
            "✓" if config.get("is_active") else "✗",
            f"{get_health_emoji(health_status)} {health_status.capitalize()}",
        )

    console.print(table)

    pagination_text = Text()
    pagination_text.append("Page ", style="dim")
    pagination_text.append(f"{metadata.get('page', 1)}", style="bold cyan")
    pagination_text.append(" of ", style="dim")
    pagination_text.append(f"{metadata.get('total_pages', 1)}", style="bold cyan")
    pagination_text.append(" • ", style="dim")
    pagination_text.append(f"{metadata.get('total', 0)}", style="bold green")
    pagination_text.append(" total configurations", style="dim")

    console.print(Panel(pagination_text, box=ROUNDED, border_style="blue", expand=False))


@db_app.command("health")
def health_cmd(
    product_id: str = typer.Argument(..., help="ID of the product"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON")
):
    """Run a health check against a product's stored credentials."""
    data = api_request("POST", f"/{product_id}/test", message=f"Checking product {product_id}...")

    if output_json:
        console.print_json(json.dumps(data))
        return

    health = data.get("data") or {}
    health_status = health.get("status", "unknown")
    console.print(Panel(
        f"[bold]Status:[/] {get_health_emoji(health_status)} {health_status.capitalize()}\n"
        f"[bold]Checked:[/] {health.get('timestamp', 'N/A')}\n"
        f"[bold]Message:[/] {data.get('message', '')}",
        title=f"Health: {product_id}",
        border_style="green" if data.get("success") else "red",
        padding=(1, 2)
    ))


@db_app.command("tables")
def tables_cmd(
    product_id: str = typer.Argument(..., help="ID of the product"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON")
):
    """List the tables of a product database."""
    tables = api_request("GET", f"/{product_id}/tables", message="Discovering tables...")

    if output_json:
        console.print_json(json.dumps(tables))
        return

    if not tables:
        console.print(Panel(
            "No tables found",
            title="Empty Result",
            border_style="yellow"
        ))
        return

    table = Table(
        title=f"[bold]Tables of {product_id}[/]",
        box=ROUNDED,
        show_header=True,
        header_style="bold magenta",
        border_style="blue"
    )
    table.add_column("Table", style="green")
    table.add_column("Rows", justify="right", style="cyan")

    for entry in tables:
        table.add_row(entry.get("name", ""), str(entry.get("row_count", 0)))

    console.print(table)


@db_app.command("inspect")
def inspect_cmd(
    product_id: str = typer.Argument(..., help="ID of the product"),
    table_name: str = typer.Argument(..., help="Name of the table"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON")
):
    """Show row count and inferred columns of one table."""
    details = api_request("GET", f"/{product_id}/tables/{table_name}", message=f"Inspecting {table_name}...")

    if output_json:
        console.print_json(json.dumps(details))
        return

    if not details.get("exists"):
        console.print(Panel(
            f"[bold red]{details.get('error') or 'Table not found'}[/]",
            title=table_name,
            border_style="red"
        ))
        raise typer.Exit(code=1)

    table = Table(
        title=f"[bold]{table_name}[/] ({details.get('row_count', 0)} rows)",
        box=ROUNDED,
        show_header=True,
        header_style="bold magenta",
        border_style="blue"
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("Column", style="green")
    table.add_column("Type", style="cyan")
    table.add_column("Sample", max_width=40)

    for column in details.get("columns", []):
        sample = column.get("sample_value")
        table.add_row(
            str(column.get("position", "")),
            column.get("name", ""),
            column.get("type", ""),
            "" if sample is None else str(sample)[:40],
        )

    console.print(table)


@db_app.command("test-credentials")
def test_credentials_cmd(
    supabase_url: str = typer.Option(..., "--url", help="Supabase project URL"),
    service_key: Optional[str] = typer.Option(None, "--key", help="Supabase service role key"),
):
    """Test Supabase credentials without saving them."""
    if not service_key:
        service_key = Prompt.ask("Service role key", password=True)

    data = api_request(
        "POST",
        "/test-credentials",
        payload={
            "db_type": "supabase",
            "supabase_url": supabase_url,
            "supabase_service_key": service_key,
        },
        message="Testing credentials...",
    )

    if data.get("success"):
        console.print(Panel(
            data.get("message") or "Connection test successful",
            title="Credentials OK",
            border_style="green"
        ))
    else:
        console.print(Panel(
            f"[bold red]{data.get('message') or 'Connection test failed'}[/]",
            title="Credentials Rejected",
            border_style="red"
        ))
        raise typer.Exit(code=1)


@db_app.command("encrypt")
def encrypt_cmd(
    value: Optional[str] = typer.Argument(None, help="Value to encrypt, prompted for when omitted"),
):
    """Encrypt a secret with the configured key, for seeding product_databases rows."""
    if value is None:
        value = Prompt.ask("Value to encrypt", password=True)

    console.print(CredentialCipher().encrypt(value))


if __name__ == "__main__":
    app()
