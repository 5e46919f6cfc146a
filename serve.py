"""Serve the product database admin application using uvicorn."""

from typing import Union
import uvicorn
from fastapi import FastAPI
from rich.panel import Panel
from rich import box
from rich.console import Console

console = Console()


def serve_app(
    app: Union[str, FastAPI],
    *,
    host: str = "0.0.0.0",
    port: int = 8020,
    reload: bool = False,
    **kwargs,
):
    """
    Serve the Product Database Admin API.

    Args:
        app: The FastAPI application or import string
        host: Host to bind the server to
        port: Port to bind the server to
        reload: Whether to enable auto-reload
        **kwargs: Additional arguments to pass to uvicorn.run
    """
    api_url = f"http://{host}:{port}"
    docs_url = f"{api_url}/docs"
    admin_url = f"{api_url}/admin/product-databases"

    panel = Panel(
        f"[bold green]API URL:[/bold green] {api_url}\n"
        f"[bold green]Admin routes:[/bold green] {admin_url}\n"
        f"[bold green]API Docs:[/bold green] [link={docs_url}]{docs_url}[/link]\n"
        f"[dim]Admin routes need an X-API-Key header from an admin profile[/dim]",
        title="🗄️ Product Database Admin API",
        expand=False,
        border_style="cyan",
        box=box.HEAVY,
        padding=(2, 2),
    )

    console.print(panel)

    uvicorn.run(app=app, host=host, port=port, reload=reload, **kwargs)
