"""
Colored output for grading results shown to the instructor.
"""

from rich.console import Console
from rich.markup import escape

ERROR = "red"
WARNING = "bright_yellow"
SUCCESS = "bold bright_green"
INFO = "bright_blue"

SEPARATOR = "-" * 30

def styled(text, style: str) -> str:
    """Wrap text in rich markup, escaping any markup it already contains"""
    return f"[{style}]{escape(str(text))}[/{style}]"

def make_console(**kwargs) -> Console:
    return Console(highlight=False, **kwargs)
