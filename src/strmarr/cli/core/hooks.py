"""Event hooks: shell commands and webhooks fired on sync events.

Configured under ``hooks:`` in config.yaml::

    hooks:
      sync_complete:
        - type: command
          command: "curl -X POST http://jellyfin:8096/Library/Refresh"
      orphan_sweep_blocked:
        - type: webhook
          url: "https://ntfy.sh/strmarr"

Commands see the event details as STRMARR_* environment variables,
webhooks receive them as the JSON body.
"""

import logging
import os
import subprocess
from typing import Callable, Dict, List

import requests

logger = logging.getLogger(__name__)

EVENTS = ("sync_complete", "sync_error", "orphan_sweep_blocked")


class CommandHook:
    """Run a shell command with the event in its environment."""

    def __init__(self, command: str):
        self.command = command

    def __call__(self, **details):
        env = dict(os.environ)
        for key, value in details.items():
            env[f"STRMARR_{key.upper()}"] = str(value)
        try:
            subprocess.run(self.command, shell=True, check=False, capture_output=True, env=env)
        except OSError as e:
            logger.error(f"Hook command failed to start: {e}")
            return
        logger.debug(f"Ran hook command: {self.command}")


class WebhookHook:
    """POST the event as JSON."""

    timeout = 5

    def __init__(self, url: str):
        self.url = url

    def __call__(self, **details):
        try:
            requests.post(self.url, json=details, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Webhook to {self.url} failed: {e}")
            return
        logger.debug(f"Sent webhook to {self.url}")


# hook type -> (required key, factory)
HOOK_TYPES = {
    "command": ("command", CommandHook),
    "webhook": ("url", WebhookHook),
}


class HookManager:
    """Fans sync events out to registered callbacks."""

    def __init__(self):
        self._hooks: Dict[str, List[Callable]] = {}

    def register(self, event: str, callback: Callable):
        """
        Register a callback for an event.

        Callbacks are called with ``event=`` plus the event details as
        keyword arguments.
        """
        self._hooks.setdefault(event, []).append(callback)

    def clear(self):
        self._hooks.clear()

    def trigger(self, event: str, **details):
        """Call every callback for ``event``; a failing callback is only logged."""
        callbacks = self._hooks.get(event, [])
        if callbacks:
            logger.debug(f"Triggering {len(callbacks)} hook(s) for {event}")
        for callback in callbacks:
            try:
                callback(event=event, **details)
            except Exception as e:
                logger.error(f"Hook for {event} raised: {e}")

    def load_from_config(self, config):
        """Register the command and webhook hooks listed under ``hooks:``."""
        for event, entries in (config.get("hooks", {}) or {}).items():
            if event not in EVENTS:
                logger.warning(f"Ignoring hooks for unknown event: {event}")
                continue

            for entry in entries if isinstance(entries, list) else []:
                hook_type = HOOK_TYPES.get(entry.get("type"))
                if hook_type is None:
                    logger.warning(f"Ignoring {event} hook with unknown type: {entry.get('type')}")
                    continue
                key, factory = hook_type
                if not entry.get(key):
                    logger.warning(f"Ignoring {event} {entry['type']} hook without '{key}'")
                    continue
                self.register(event, factory(entry[key]))


_hook_manager = HookManager()


def get_hook_manager() -> HookManager:
    return _hook_manager


def trigger_hook(event: str, **details):
    """Trigger an event on the process-wide hook manager."""
    _hook_manager.trigger(event, **details)
