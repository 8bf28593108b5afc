"""
PixelVault CLI Tool

Command-line client for the PixelVault generation API.

Usage:
    pixelvault generate "prompt"   - Generate an image (waits for queued jobs)
    pixelvault status JOB_ID       - Show a queued job's status
    pixelvault jobs                - List tracked jobs
    pixelvault serve               - Start the API server
"""
import os
import sys
import time

import click
import httpx
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from pixelvault import __version__

# Load environment variables
load_dotenv()

console = Console()

# API Configuration
API_BASE = os.getenv("PIXELVAULT_API_URL", "http://localhost:8000")
POLL_INTERVAL = 5.0
MAX_POLLS = 120  # 10 minutes at 5s


def api_url(path: str) -> str:
    return f"{API_BASE.rstrip('/')}/api/v1{path}"


def print_error(response: httpx.Response) -> None:
    """Print an API error body in a readable form."""
    try:
        body = response.json()
    except ValueError:
        body = {"error": response.text}
    console.print(f"[red]✗ {body.get('error', 'Request failed')}[/red] ({response.status_code})")
    if body.get("detail"):
        console.print(f"  {body['detail']}")
    if body.get("providers_attempted"):
        console.print(f"  Providers attempted: {', '.join(body['providers_attempted'])}")


def wait_for_job(client: httpx.Client, job_id: str) -> dict:
    """Poll the status endpoint until the job is terminal.

    Returns:
        The final status payload.
    """
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task("Queued...", total=100)

        for _ in range(MAX_POLLS):
            time.sleep(POLL_INTERVAL)
            response = client.get(api_url(f"/ai/horde-status/{job_id}"))
            if response.status_code == 429:
                progress.update(task, description="Rate limited, retrying...")
                continue
            if response.is_error:
                progress.stop()
                print_error(response)
                sys.exit(1)
            data = response.json()

            if data.get("done") or data.get("faulted"):
                progress.update(task, completed=100 if data.get("done") else data.get("progress", 0))
                return data

            position = data.get("queue_position")
            description = f"Queue position {position}" if position else "Generating..."
            progress.update(task, completed=data.get("progress", 0), description=description)

    return {"done": False, "faulted": False, "error": "Timed out waiting for generation"}


@click.group()
@click.version_option(version=__version__, prog_name="PixelVault")
def main():
    """
    PixelVault - AI image generation for your gallery
    """
    pass


@main.command()
@click.argument("prompt")
@click.option("--backend", "-b", default=None, help="Backend to try first (horde, gemini, huggingface, kobold, openai)")
@click.option("--size", default="512x512", help="Image size as WIDTHxHEIGHT")
@click.option("--steps", default=20, type=int, help="Sampling steps")
@click.option("--negative", default=None, help="Negative prompt")
@click.option("--no-wait", is_flag=True, help="Return immediately for queued jobs")
def generate(prompt: str, backend: str | None, size: str, steps: int, negative: str | None, no_wait: bool):
    """
    Generate an image from a text prompt.

    Example:
        pixelvault generate "a red fox in snow" --backend horde
    """
    settings = {"size": size, "steps": steps}
    if backend:
        settings["provider"] = backend
    if negative:
        settings["negativePrompt"] = negative

    console.print(Panel(f"[bold cyan]{prompt}[/bold cyan]", title="Generating Image", border_style="cyan"))

    try:
        with httpx.Client(timeout=120.0) as client:
            response = client.post(api_url("/ai/generate-image"), json={"prompt": prompt, "settings": settings})
            if response.is_error:
                print_error(response)
                sys.exit(1)
            data = response.json()

            if data.get("imageUrl"):
                console.print(f"\n[green]✓[/green] Generated with [cyan]{data['provider']}[/cyan]")
                console.print(f"Image: [cyan]{data['imageUrl']}[/cyan]")
                return

            job_id = data["jobId"]
            console.print(f"\n[green]✓[/green] Queued on [cyan]{data['provider']}[/cyan]")
            console.print(f"Job ID: [cyan]{job_id}[/cyan]")
            if no_wait:
                return

            final = wait_for_job(client, job_id)
    except httpx.HTTPError as e:
        console.print(f"[red]✗ Could not reach API server: {e}[/red]")
        sys.exit(1)

    if final.get("done"):
        console.print("\n[green]✓ Image generated and saved to your gallery (private)[/green]")
        console.print(f"Image: [cyan]{final.get('imageUrl')}[/cyan]")
    else:
        console.print(f"\n[red]✗ {final.get('error') or 'Generation failed'}[/red]")
        sys.exit(1)


@main.command()
@click.argument("job_id")
def status(job_id: str):
    """Show the status of a queued generation job."""
    try:
        response = httpx.get(api_url(f"/ai/horde-status/{job_id}"), timeout=15.0)
    except httpx.HTTPError as e:
        console.print(f"[red]✗ Could not reach API server: {e}[/red]")
        sys.exit(1)

    if response.is_error:
        print_error(response)
        sys.exit(1)

    data = response.json()
    table = Table(title=f"Job {job_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key in ("status", "progress", "queue_position", "waiting", "processing", "kudos", "imageUrl", "error"):
        if data.get(key) is not None:
            table.add_row(key, str(data[key]))
    console.print(table)


@main.command()
def jobs():
    """List jobs tracked by the server."""
    try:
        response = httpx.get(api_url("/ai/jobs"), timeout=15.0)
    except httpx.HTTPError as e:
        console.print(f"[red]✗ Could not reach API server: {e}[/red]")
        sys.exit(1)

    if response.is_error:
        print_error(response)
        sys.exit(1)

    data = response.json()
    table = Table(title=f"Generation jobs ({data['total']})")
    table.add_column("ID", style="cyan")
    table.add_column("Backend")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Prompt")
    for job in data["jobs"]:
        table.add_row(job["id"], job["backend"], job["status"], f"{job['progress']}%", job["prompt"][:40])
    console.print(table)


@main.command()
@click.option("--host", default="0.0.0.0", help="Host to bind")
@click.option("--port", default=8000, help="Port to run server on")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: str, port: int, reload: bool):
    """Start the PixelVault API server."""
    import uvicorn

    console.print(f"[green]Starting PixelVault on http://{host}:{port}[/green]")
    uvicorn.run("pixelvault.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    main()
