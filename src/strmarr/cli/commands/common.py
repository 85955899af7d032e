"""Console and message styling shared by the CLI commands."""

from rich.console import Console

console = Console()

# message kind -> (rich color, symbol)
STYLES = {
    "success": ("green", "✓"),
    "error": ("red", "✗"),
    "warning": ("yellow", "⚠"),
    "info": ("cyan", "ℹ"),
}


def _prefix(kind: str) -> str:
    color, symbol = STYLES[kind]
    return f"[{color}]{symbol}[/{color}]"


PREFIX_SUCCESS = _prefix("success")
PREFIX_ERROR = _prefix("error")
PREFIX_WARNING = _prefix("warning")
PREFIX_INFO = _prefix("info")


def error_message(text: str) -> str:
    return f"{PREFIX_ERROR} {text}"


def warning_message(text: str) -> str:
    return f"{PREFIX_WARNING} {text}"


def info_message(text: str) -> str:
    return f"{PREFIX_INFO} {text}"


def print_connection_test(service: str) -> None:
    console.print(f"[cyan]Testing {service} connection…[/cyan]")


def print_connection_success(service: str) -> None:
    console.print(f"{PREFIX_SUCCESS} {service} connection successful\n")


def print_connection_failure(service: str, hint: str = "") -> None:
    """
    Print a connection failure with an optional hint on what to check.

    Args:
        service: Name of the service
        hint: Config keys or steps worth checking
    """
    console.print(f"{PREFIX_ERROR} Failed to connect to {service}")
    if hint:
        console.print(f"  [dim]{hint}[/dim]")
