"""koso rich error messages.

Every error shown to the user states what went wrong and the action that
fixes it.

Usage:
    from koso.cli.errors import err_no_db
    console.print(err_no_db(".koso.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

_ENV_MAP = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "azure": "AZURE_API_KEY",
}


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _ENV_MAP.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".koso.db") -> str:
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  koso init"
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix koso.yaml (or ~/.koso/config.yaml) and try again."
    )


def err_unknown_source_type(source_type: str, allowed: tuple[str, ...]) -> str:
    return (
        f"[red]Error:[/] Unknown source type '{source_type}'.\n"
        f"  Use one of: {', '.join(allowed)}"
    )


def err_file_not_found(path: str) -> str:
    return f"[red]Error:[/] File not found: '{path}'"


def err_source_not_indexed(source_id: str) -> str:
    return (
        f"[yellow]Not indexed:[/] '{source_id}' has no stored embeddings.\n"
        "  Run:  koso index <file> --id " + source_id
    )


def err_spec_not_found(spec_id: str, workspace_id: str) -> str:
    return (
        f"[red]Error:[/] Specification '{spec_id}' not found in workspace '{workspace_id}'.\n"
        "  Run:  koso index <file> --type specification --id " + spec_id
    )


def err_computing(workspace_id: str, lease_minutes: int) -> str:
    return (
        f"[yellow]Busy:[/] themes for workspace '{workspace_id}' are already being computed.\n"
        f"  Wait for it to finish (at most {lease_minutes} min) and try again."
    )


def err_no_report(spec_id: str) -> str:
    return (
        f"[yellow]No report:[/] nothing generated yet for '{spec_id}'.\n"
        f"  Run:  koso report generate {spec_id}"
    )


def err_failed(action: str) -> str:
    """Generic failure of a user-initiated command; details go to the log."""
    return (
        f"[red]Error:[/] {action} failed.\n"
        "  Re-run with --verbose for details."
    )


def warn_stale_report(spec_id: str) -> str:
    return (
        "[yellow]⚠[/] The specification changed since this report was generated.\n"
        f"  Regenerate:  koso report generate {spec_id}"
    )
