#!/usr/bin/env python3
"""Database initialization script for the product database admin service.

This script creates the admin tables and their indexes in the Supabase database.
"""

import os
import asyncio
import asyncpg
from pathlib import Path
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.panel import Panel
from rich.box import HEAVY
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from app.db.schema import SUPABASE_SCHEMA, build_create_table_sql, build_index_sql, index_name

# Setup logging to file only (silent console)
log_dir = Path("logs")
log_dir.mkdir(exist_ok=True)
logger.remove()
logger.add(log_dir / "db_init_{time}.log", rotation="10 MB")

# Initialize Rich console
console = Console()

# Load environment variables
load_dotenv()

# Database connection parameters
DB_CONNECTION_STRING = os.getenv("SUPABASE_CONNECTION_STRING")
DB_HOST = os.getenv("SUPABASE_HOST")
DB_PASSWORD = os.getenv("SUPABASE_PASSWORD")
DB_PORT = os.getenv("SUPABASE_PORT", "5432")
DB_USER = os.getenv("SUPABASE_USER", "postgres")
DB_NAME = os.getenv("SUPABASE_DB_NAME", "postgres")


async def connect():
    """Open a connection from SUPABASE_CONNECTION_STRING or the host settings."""
    if DB_CONNECTION_STRING:
        return await asyncpg.connect(DB_CONNECTION_STRING)
    if not DB_HOST or not DB_PASSWORD:
        raise ValueError(
            "Database connection parameters missing. Set SUPABASE_CONNECTION_STRING or both SUPABASE_HOST and SUPABASE_PASSWORD"
        )
    return await asyncpg.connect(
        user=DB_USER,
        password=DB_PASSWORD,
        database=DB_NAME,
        host=DB_HOST,
        port=DB_PORT,
    )


async def run_statements(conn, title: str, statements):
    """
    Execute (label, table, sql) statements with a progress bar.

    Returns:
        Number of statements that succeeded and a Rich table of results
    """
    results_table = Table(
        title=f"[bold cyan]{title}[/bold cyan]",
        show_header=True,
        header_style="bold magenta",
        border_style="bright_blue",
        box=HEAVY,
    )
    results_table.add_column("Name", style="bright_yellow")
    results_table.add_column("Table", style="bright_green")
    results_table.add_column("Status", justify="center")

    success_count = 0
    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("[bold]{task.percentage:.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task(f"[yellow]Creating {title.lower()}...", total=len(statements))

        for label, table_name, sql in statements:
            try:
                await conn.execute(sql)
                results_table.add_row(
                    Text(label, style="yellow"),
                    Text(table_name, style="green"),
                    Text("✅", style="bold bright_green"),
                )
                success_count += 1
            except Exception as e:
                results_table.add_row(
                    Text(label, style="dim"),
                    Text(table_name, style="dim"),
                    Text("❌", style="bold red"),
                )
                logger.error(f"Failed to create {label}: {str(e)}")

            progress.update(task, advance=1)

    return success_count, results_table


def report(count: int, total: int, noun: str):
    if count == total:
        console.print(f"[bold green]✅ All {total} {noun} created successfully![/bold green]")
    else:
        console.print(f"[bold yellow]⚠️ Created {count} out of {total} {noun}[/bold yellow]")


async def create_tables():
    """Create all required tables and indexes in the admin database."""
    console.print("\n")
    console.print(
        Panel.fit(
            "[bold green]Product Database Admin[/bold green]\nDatabase Initialization",
            title="🗄️ Admin",
            border_style="green",
        )
    )
    console.print("\n")

    try:
        conn = await connect()
        logger.info("Database connection established")
    except Exception as e:
        console.print(
            Panel(
                f"[bold red]Failed to connect to database:[/bold red]\n{str(e)}",
                title="❌ Connection Error",
                border_style="red",
            )
        )
        logger.error(f"Database connection failed: {str(e)}")
        return

    try:
        # Tables are created in declaration order so references resolve
        table_statements = [
            (table["name"], table["name"], build_create_table_sql(table))
            for table in SUPABASE_SCHEMA["tables"]
        ]
        index_statements = [
            (index_name(index), index["table"], build_index_sql(index))
            for index in SUPABASE_SCHEMA["indexes"]
        ]

        console.print(
            Panel(
                "[bold green]Creating admin tables[/bold green]",
                title="📋 Tables",
                border_style="blue",
            )
        )
        table_success, table_results = await run_statements(conn, "Tables", table_statements)
        console.print(table_results)
        report(table_success, len(table_statements), "tables")

        console.print("\n")
        console.print(
            Panel(
                "[bold green]Setting up lookups and the one-active-config-per-product rule[/bold green]",
                title="🔍 Indexes",
                border_style="blue",
            )
        )
        index_success, index_results = await run_statements(conn, "Indexes", index_statements)
        console.print(index_results)
        report(index_success, len(index_statements), "indexes")

        console.print("\n")
        console.print(
            Panel(
                f"[bold green]Database Initialization Complete![/bold green]\n\n"
                f"[green]✓[/green] {table_success}/{len(table_statements)} Tables\n"
                f"[green]✓[/green] {index_success}/{len(index_statements)} Indexes\n\n"
                "Product database configurations can now be stored",
                title="✅ Success",
                border_style="green",
            )
        )

    except Exception as e:
        console.print("\n")
        console.print(
            Panel(
                f"[bold red]Database initialization failed with error:[/bold red]\n\n{str(e)}",
                title="❌ Error",
                border_style="red",
            )
        )
        logger.error(f"Error: {str(e)}")
        raise
    finally:
        await conn.close()
        logger.info("Database connection closed")


async def main():
    """Execute the database initialization process."""
    try:
        await create_tables()
    except Exception as e:
        logger.error(f"Error in main: {str(e)}")
        raise


if __name__ == "__main__":
    asyncio.run(main())
