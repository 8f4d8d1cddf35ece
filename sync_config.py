"""
Connection settings for Jira and OpenProject.

Values come from the environment, optionally seeded from a `.env` file in
the working directory.  Missing secrets are asked for interactively when a
terminal is attached; otherwise loading fails before anything is touched.
"""

import getpass
import os
import sys
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from errors import ConfigError


DEFAULT_JIRA_KEY_FIELD = 1
DEFAULT_EPIC_LINK_FIELD = "customfield_10014"

# env var → (prompt text, secret?)
REQUIRED_VARS: dict = {
    "JIRA_HOST":           ("Jira host (e.g. acme.atlassian.net)", False),
    "JIRA_EMAIL":          ("Jira account email", False),
    "JIRA_API_TOKEN":      ("Jira API token", True),
    "OPENPROJECT_HOST":    ("OpenProject URL (e.g. https://op.example.com)", False),
    "OPENPROJECT_API_KEY": ("OpenProject API key", True),
}


@dataclass(frozen=True)
class Settings:
    jira_host:           str
    jira_email:          str
    jira_api_token:      str
    openproject_host:    str
    openproject_api_key: str
    jira_key_field:      int = DEFAULT_JIRA_KEY_FIELD
    epic_link_field:     str = DEFAULT_EPIC_LINK_FIELD


def prompt(message: str, default: str = None) -> str:
    suffix = f" [{default}]" if default is not None else ""
    value = input(f"{message}{suffix}: ").strip()
    return value if value else (default or "")


def prompt_secret(message: str) -> str:
    return getpass.getpass(f"{message}: ").strip()


def _ask(name: str) -> str:
    text, secret = REQUIRED_VARS[name]
    return prompt_secret(text) if secret else prompt(text)


def load_settings(interactive: Optional[bool] = None,
                  dotenv_path: Optional[str] = None,
                  jira: bool = True, openproject: bool = True) -> Settings:
    """
    Build Settings from the environment.  Raises ConfigError naming every
    variable that is still missing after (optional) prompting.  Pass
    jira=False or openproject=False for commands that talk to one side only;
    the skipped fields are left empty.
    """
    load_dotenv(dotenv_path)
    if interactive is None:
        interactive = sys.stdin.isatty()

    values: dict = {}
    missing: list = []
    for name in REQUIRED_VARS:
        if name.startswith("JIRA_") and not jira:
            continue
        if name.startswith("OPENPROJECT_") and not openproject:
            continue
        value = (os.getenv(name) or "").strip()
        if not value and interactive:
            value = _ask(name)
        if value:
            values[name] = value
        else:
            missing.append(name)
    if missing:
        raise ConfigError("Missing configuration for: " + ", ".join(missing))

    raw_field = (os.getenv("OPENPROJECT_JIRA_KEY_FIELD") or "").strip()
    try:
        key_field = int(raw_field) if raw_field else DEFAULT_JIRA_KEY_FIELD
    except ValueError:
        raise ConfigError(f"OPENPROJECT_JIRA_KEY_FIELD must be a custom field number, "
                          f"got '{raw_field}'")

    return Settings(
        jira_host=values.get("JIRA_HOST", ""),
        jira_email=values.get("JIRA_EMAIL", ""),
        jira_api_token=values.get("JIRA_API_TOKEN", ""),
        openproject_host=values.get("OPENPROJECT_HOST", ""),
        openproject_api_key=values.get("OPENPROJECT_API_KEY", ""),
        jira_key_field=key_field,
        epic_link_field=(os.getenv("JIRA_EPIC_LINK_FIELD") or "").strip()
                        or DEFAULT_EPIC_LINK_FIELD,
    )
