"""
JSON-line command surface of the supervisor host.

Each request is one JSON object per line, ``{"command": "...", ...}``; each
reply is one JSON object per line. The handler receives its supervisor at
construction rather than reaching for a module-level instance.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from .logging_utils import get_module_logger
from .version_supervisor import VersionSupervisor

logger = get_module_logger("HostCommands")


def parse_command(raw_json: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(raw_json.strip())
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse JSON command: %s - %s", e, raw_json[:100])
        return None

    if not isinstance(data, dict):
        logger.warning("Command is not an object: %s", raw_json[:100])
        return None

    if not isinstance(data.get("command"), str):
        logger.warning("Command missing 'command' key: %s", raw_json[:100])
        return None

    return data


def encode_reply(reply: Dict[str, Any]) -> str:
    return json.dumps(reply) + "\n"


class HostCommandHandler:

    def __init__(self, supervisor: VersionSupervisor):
        self.supervisor = supervisor

    async def handle_line(self, raw_json: str) -> Dict[str, Any]:
        data = parse_command(raw_json)
        if data is None:
            return {"success": False, "message": "Malformed command"}
        return await self.handle(data)

    async def handle(self, data: Dict[str, Any]) -> Dict[str, Any]:
        command = str(data.get("command", "")).lower()
        logger.debug("Received command: %s", command)

        reply: Dict[str, Any]
        if command == "try_start":
            result = await self.supervisor.try_start(data.get("version") or None)
            reply = {"success": result.started, **result.to_dict()}
        elif command == "get_url":
            reply = {"success": True, "url": self.supervisor.backend_url}
        elif command == "get_port":
            reply = {"success": True, "port": self.supervisor.backend_port}
        elif command == "get_versions":
            manifest = await self.supervisor.get_versions_manifest()
            reply = {"success": True, **manifest.to_dict()}
        elif command == "set_version":
            version = data.get("version")
            if not isinstance(version, str) or not version:
                reply = {"success": False, "message": "set_version requires a 'version' string"}
            else:
                reply = (await self.supervisor.set_version(version)).to_dict()
        elif command == "get_selected_version":
            reply = {"success": True, "version": await self.supervisor.get_stored_version()}
        elif command == "status":
            reply = {
                "success": True,
                "state": self.supervisor.state.value,
                "version": self.supervisor.current_version,
            }
        elif command == "stop":
            await self.supervisor.stop()
            reply = {"success": True}
        else:
            logger.warning("Unknown command: %s", command)
            reply = {"success": False, "message": f"Unknown command: {command}"}

        if "command_id" in data:
            reply["command_id"] = data["command_id"]
        return reply


__all__ = ["HostCommandHandler", "parse_command", "encode_reply"]
