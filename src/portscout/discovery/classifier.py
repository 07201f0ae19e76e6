"""
Framework classification for listening processes.

FRAMEWORK_PATTERNS is evaluated top to bottom against the lower-cased
"command name" text. Several needles are substrings of tokens used by later
entries, so the order is part of the behaviour.
"""

from typing import Optional, Tuple


FRAMEWORK_PATTERNS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("vite",), "Vite"),
    (("next",), "Next.js"),
    (("nuxt",), "Nuxt"),
    (("remix",), "Remix"),
    (("astro",), "Astro"),
    (("angular", "ng "), "Angular"),
    (("react-scripts",), "CRA"),
    (("webpack-dev-server",), "Webpack Dev Server"),
    (("uvicorn",), "Uvicorn"),
    (("gunicorn",), "Gunicorn"),
    (("django",), "Django"),
    (("rails",), "Rails"),
    (("dotnet",), ".NET"),
    (("php",), "PHP"),
    (("deno",), "Deno"),
    (("go ", "go.exe"), "Go"),
    (("autohotkey",), "AutoHotkey"),
)


def classify(command: Optional[str], process_name: Optional[str]) -> Optional[str]:
    """Return the label of the first matching pattern, or None."""
    text = f"{command or ''} {process_name or ''}".lower()
    for needles, label in FRAMEWORK_PATTERNS:
        if any(needle in text for needle in needles):
            return label
    return None


__all__ = ['FRAMEWORK_PATTERNS', 'classify']
