"""Configuration: Pydantic models for termbridge settings."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class SchedulerConfig(BaseModel):
    """When to hand accumulated PTY output to the extractor."""

    debounce: float = Field(
        default=0.1, description="Quiet period (seconds) before a flush"
    )
    response_marker: str = Field(default="⏺", description="Agent turn-start glyph")
    ready_prompt: str = Field(default="│ >", description="Idle prompt inside its box")
    prompt_frame: str = Field(default="╰─", description="Bottom-left corner of the prompt box")
    prompt_closing: str = Field(default="─╯", description="Bottom-right corner of the prompt box")


class ExtractorConfig(BaseModel):
    """Line heuristics for turning terminal output into conversation turns.

    Patterns are regular expressions; hints and noise are plain substrings.
    """

    prompt_glyphs: list[str] = Field(default_factory=lambda: [">"])
    response_glyph: str = Field(default="⏺")
    dedup_window: float = Field(
        default=5.0,
        description="Seconds an emitted agent line suppresses identical redraws",
    )
    permission_triggers: list[str] = Field(
        default_factory=lambda: [
            r"needs your permission to use (\w+)",
            r"Do you want to make this edit",
            r"Do you want to proceed\?",
        ]
    )
    permission_resolutions: list[str] = Field(
        default_factory=lambda: [r"^(?:[❯›>]\s*)?(?:\d+\.\s*)?(?:Yes|No)\b"]
    )
    default_tool_label: str = Field(default="a tool")
    box_characters: str = Field(default="─│╭╮╰╯┌┐└┘├┤┬┴┼═║╔╗╚╝")
    chrome_hints: list[str] = Field(
        default_factory=lambda: [
            "? for shortcuts",
            "Use /ide to connect",
            "Tip:",
            'Try "',
            "Edit file",
            "Yes, and don't ask again",
            "No, and tell Claude",
        ]
    )
    chrome_lines: list[str] = Field(
        default_factory=lambda: ["esc to interrupt"],
        description="Lines dropped as UI chrome only when they match exactly",
    )
    progress_pattern: str = Field(
        default=(
            r"^(?:[✻✽✶✳✢·*✦]\s*)?\w+(?:…|\.\.\.)\s*"
            r"\(\s*(?:\d+m\s*)?\d+s\s*·\s*(?:[↑↓⚒]\s*)?[\d.,]+k?\s*tokens"
            r"(?:\s*·\s*esc to interrupt)?\s*\)$"
        )
    )
    agent_noise: list[str] = Field(
        default_factory=lambda: [
            "Thriving",
            "tokens",
            "Done",
            "API Error",
            "Tool uses",
            "tool uses",
            "Initializing…",
            "ctrl+r to expand",
        ]
    )
    agent_noise_patterns: list[str] = Field(
        default_factory=lambda: [r"^Task\(.*\)$", r"^⎿\s+"]
    )
    continuation_suffixes: list[str] = Field(
        default_factory=lambda: ["...", "…"],
        description="An open agent turn ending with one of these is held at flush end",
    )
    settle_open_agent_turn: bool = Field(
        default=True,
        description="Emit an open agent turn at the end of a flush if it looks finished",
    )


class RelayConfig(BaseModel):
    """Keystrokes used to type inbound commands into the PTY."""

    stop_word: str = Field(default="STOP")
    interrupt_key: str = Field(default="\x1b", description="Sent for the stop word (ESC)")
    clear_line_key: str = Field(default="\x15", description="Ctrl+U")
    submit_key: str = Field(default="\r")
    submit_delay: float = Field(
        default=0.05, description="Seconds between typing the text and submitting"
    )


class FileTransportConfig(BaseModel):
    """File mailbox transport settings."""

    input_path: str = Field(default="input.txt")
    output_path: str = Field(default="output.txt")
    poll_interval: float = Field(default=0.5, description="Seconds between input checks")


class BridgeConfig(BaseModel):
    """Top-level termbridge configuration."""

    command: str = Field(default="claude", description="Program to wrap")
    args: list[str] = Field(default_factory=list)
    instance: str = Field(
        default_factory=lambda: Path.cwd().name or "termbridge",
        description="Instance name reported to the transport",
    )
    transport: str = Field(
        default="file",
        description="'file', 'package.module:Class' or a path to a .py plugin",
    )
    transport_options: dict[str, Any] = Field(default_factory=dict)
    cwd: str | None = Field(default=None)
    cols: int | None = Field(default=None, description="PTY width (default: host terminal)")
    rows: int | None = Field(default=None, description="PTY height (default: host terminal)")
    verbose: bool = Field(default=False)
    log_file: str | None = Field(default=None)
    shutdown_timeout: float = Field(
        default=5.0, description="Seconds to wait for queued messages on shutdown"
    )

    file: FileTransportConfig = Field(default_factory=FileTransportConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    extractor: ExtractorConfig = Field(default_factory=ExtractorConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)

    has_config_file: bool = Field(default=False, exclude=True)

    @classmethod
    def search_paths(cls) -> list[Path]:
        """Config files in ascending priority."""
        home = Path.home()
        return [
            Path("/etc/termbridge/config.json"),
            home / ".config" / "termbridge" / "config.json",
            home / ".termbridge" / "config.json",
            Path("termbridge.json"),
            Path(".termbridge.json"),
        ]

    @classmethod
    def load(cls, config_path: str | None = None) -> BridgeConfig:
        """Load config from files, env vars, or defaults.

        Priority: env vars > explicit config file > local file > user file
        > system file > defaults. Nested sections are deep-merged.

        Env vars:
            TERMBRIDGE_COMMAND       - Program to wrap
            TERMBRIDGE_TRANSPORT     - Transport name or plugin reference
            TERMBRIDGE_INSTANCE      - Instance name
            TERMBRIDGE_VERBOSE       - "true" / "1" enables debug logging
            TERMBRIDGE_FILE_INPUT    - File transport input path
            TERMBRIDGE_FILE_OUTPUT   - File transport output path
            TERMBRIDGE_DEBOUNCE_MS   - Flush debounce in milliseconds
            TERMBRIDGE_LOG_FILE      - Log file path
        """
        # .env next to the wrapped project, not next to this package
        load_dotenv(find_dotenv(usecwd=True), override=False)

        config_data: dict[str, Any] = {}
        found = False

        paths = cls.search_paths()
        if config_path:
            paths.append(Path(config_path))
        for path in paths:
            if not path.is_file():
                continue
            try:
                with open(path, encoding="utf-8") as f:
                    config_data = _deep_merge(config_data, json.load(f))
                found = True
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Ignoring config file %s: %s", path, e)

        env = os.environ
        if env.get("TERMBRIDGE_COMMAND"):
            config_data["command"] = env["TERMBRIDGE_COMMAND"]
        if env.get("TERMBRIDGE_TRANSPORT"):
            config_data["transport"] = env["TERMBRIDGE_TRANSPORT"]
        if env.get("TERMBRIDGE_INSTANCE"):
            config_data["instance"] = env["TERMBRIDGE_INSTANCE"]
        if env.get("TERMBRIDGE_VERBOSE"):
            config_data["verbose"] = env["TERMBRIDGE_VERBOSE"].lower() in ("1", "true", "yes")
        if env.get("TERMBRIDGE_LOG_FILE"):
            config_data["log_file"] = env["TERMBRIDGE_LOG_FILE"]

        file_section = dict(config_data.get("file", {}))
        if env.get("TERMBRIDGE_FILE_INPUT"):
            file_section["input_path"] = env["TERMBRIDGE_FILE_INPUT"]
        if env.get("TERMBRIDGE_FILE_OUTPUT"):
            file_section["output_path"] = env["TERMBRIDGE_FILE_OUTPUT"]
        if file_section:
            config_data["file"] = file_section

        if env.get("TERMBRIDGE_DEBOUNCE_MS"):
            raw = env["TERMBRIDGE_DEBOUNCE_MS"]
            try:
                debounce_ms = float(raw)
            except ValueError:
                debounce_ms = -1.0
            if debounce_ms >= 0:
                scheduler = dict(config_data.get("scheduler", {}))
                scheduler["debounce"] = debounce_ms / 1000
                config_data["scheduler"] = scheduler
            else:
                logger.warning("Ignoring TERMBRIDGE_DEBOUNCE_MS=%r: not a duration in ms", raw)

        config = cls.model_validate(config_data)
        config.has_config_file = found
        return config


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
