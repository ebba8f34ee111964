"""Configuration management for the IMC chat engine."""

import json
import os
from typing import Any

import yaml
from dotenv import load_dotenv

CONFIG_PATH_ENV = "IMC_CHAT_CONFIG"


class Configuration:
    """Manages configuration and environment variables for the chat engine."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables.

        Args:
            config_path: Explicit YAML path. Falls back to the IMC_CHAT_CONFIG
                environment variable, then to config.yaml beside this module.
        """
        self.load_env()  # Load .env for API keys
        self.config_path = (
            config_path
            or os.getenv(CONFIG_PATH_ENV)
            or os.path.join(os.path.dirname(__file__), "config.yaml")
        )
        self._config = self._load_yaml_config(self.config_path)

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "Configuration":
        """Build a configuration from an in-memory dict (no files read)."""
        instance = cls.__new__(cls)
        instance.config_path = None
        instance._config = config
        return instance

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(config_path: str) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    @staticmethod
    def load_config(file_path: str) -> dict[str, Any]:
        """Load MCP server configuration from JSON file.

        Args:
            file_path: Path to the JSON configuration file.

        Returns:
            Dict containing server configuration.

        Raises:
            FileNotFoundError: If configuration file doesn't exist.
            JSONDecodeError: If configuration file is invalid JSON.
        """
        with open(file_path) as f:
            return json.load(f)

    @property
    def active_provider(self) -> str:
        """Name of the active LLM provider."""
        return self._config.get("llm", {}).get("active", "openai")

    @property
    def llm_api_key(self) -> str:
        """Get the API key for the active LLM provider.

        Returns:
            The API key as a string (empty for the stub provider).

        Raises:
            ValueError: If the API key is not found in environment variables.
        """
        active_provider = self.active_provider
        if active_provider == "stub":
            return ""

        # Map provider names to environment variable names
        provider_key_map = {
            "openai": "OPENAI_API_KEY",
            "groq": "GROQ_API_KEY",
            "openrouter": "OPENROUTER_API_KEY",
        }

        env_key = provider_key_map.get(active_provider)
        if not env_key:
            raise ValueError(
                f"Unknown provider '{active_provider}' - no API key mapping found"
            )

        api_key = os.getenv(env_key)
        if not api_key:
            raise ValueError(
                f"API key '{env_key}' not found in environment variables "
                f"for provider '{active_provider}'"
            )

        return api_key

    def get_llm_config(self) -> dict[str, Any]:
        """Get active LLM provider configuration from YAML.

        Returns:
            Active LLM provider configuration dictionary.
        """
        llm_config = self._config.get("llm", {})
        active_provider = self.active_provider
        providers = llm_config.get("providers", {})

        if active_provider not in providers:
            raise ValueError(
                f"Active provider '{active_provider}' not found in providers config"
            )

        return providers[active_provider]

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._config.get("logging", {})

    def get_chat_service_config(self) -> dict[str, Any]:
        """Get chat service configuration from YAML."""
        return self._config.get("chat", {}).get("service", {})

    def get_system_prompt(self) -> str:
        """Get the system prompt that opens every session.

        Raises:
            ValueError: If system_prompt is missing or blank.
        """
        prompt = self.get_chat_service_config().get("system_prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError(
                "system_prompt must be explicitly configured in config.yaml "
                "under chat.service"
            )
        return prompt.rstrip()

    def get_history_config(self) -> dict[str, Any]:
        """Get history window configuration from YAML.

        Returns:
            History configuration with validated max_messages.

        Raises:
            ValueError: If max_messages is missing or invalid.
        """
        history_config = self.get_chat_service_config().get("history", {})

        if "max_messages" not in history_config:
            raise ValueError(
                "max_messages must be explicitly configured in config.yaml "
                "under chat.service.history"
            )

        max_messages = history_config["max_messages"]
        # Room for the system message plus at least one message after it
        if not isinstance(max_messages, int) or max_messages < 2:
            raise ValueError("history.max_messages must be an integer >= 2")

        return {"max_messages": max_messages}

    def get_max_tool_hops(self) -> int:
        """Get the maximum number of tool hops allowed.

        Raises:
            ValueError: If max_tool_hops is not configured or invalid.
        """
        service_config = self.get_chat_service_config()

        if "max_tool_hops" not in service_config:
            raise ValueError(
                "max_tool_hops must be explicitly configured in config.yaml "
                "under chat.service"
            )

        max_hops = service_config["max_tool_hops"]

        # Validate that it's a positive integer
        if not isinstance(max_hops, int) or max_hops < 1:
            raise ValueError("max_tool_hops must be a positive integer")

        return max_hops

    def get_health_config(self) -> dict[str, Any]:
        """Get health probe configuration from YAML."""
        health_config = self.get_chat_service_config().get("health", {})
        timeout = health_config.get("timeout", 15.0)
        if timeout <= 0:
            raise ValueError("health.timeout must be positive")
        return {
            "timeout": timeout,
            "probe_prompt": health_config.get(
                "probe_prompt", "Say 'OK' if you can respond"
            ),
        }

    def get_tool_naming_config(self) -> dict[str, str]:
        """Get extra known tool names (alias -> canonical) from YAML."""
        known = self._config.get("tools", {}).get("known_names", {}) or {}
        if not isinstance(known, dict):
            raise ValueError("tools.known_names must be a mapping")
        return {str(alias): str(name) for alias, name in known.items()}

    def get_mcp_connection_config(self) -> dict[str, Any]:
        """Get MCP connection configuration from YAML.

        Returns:
            MCP connection configuration dictionary with validated values.

        Raises:
            ValueError: If required connection parameters are missing or invalid.
        """
        mcp_config = self._config.get("mcp", {})
        connection_config = mcp_config.get("connection", {})

        required_keys = [
            "max_reconnect_attempts",
            "initial_reconnect_delay",
            "max_reconnect_delay",
            "connection_timeout",
            "ping_timeout",
        ]

        for key in required_keys:
            if key not in connection_config:
                raise ValueError(
                    f"{key} must be explicitly configured in config.yaml "
                    f"under mcp.connection"
                )

        max_attempts = connection_config["max_reconnect_attempts"]
        initial_delay = connection_config["initial_reconnect_delay"]
        max_delay = connection_config["max_reconnect_delay"]
        connection_timeout = connection_config["connection_timeout"]
        ping_timeout = connection_config["ping_timeout"]

        if max_attempts < 1:
            raise ValueError("max_reconnect_attempts must be at least 1")
        if initial_delay <= 0:
            raise ValueError("initial_reconnect_delay must be positive")
        if max_delay < initial_delay:
            raise ValueError("max_reconnect_delay must be >= initial_reconnect_delay")
        if connection_timeout <= 0:
            raise ValueError("connection_timeout must be positive")
        if ping_timeout <= 0:
            raise ValueError("ping_timeout must be positive")

        return {
            "max_reconnect_attempts": max_attempts,
            "initial_reconnect_delay": initial_delay,
            "max_reconnect_delay": max_delay,
            "connection_timeout": connection_timeout,
            "ping_timeout": ping_timeout,
        }

    def get_mcp_servers_path(self) -> str | None:
        """Path of the MCP servers JSON file, or None when MCP is disabled."""
        mcp_config = self._config.get("mcp", {})
        if not mcp_config.get("enabled", False):
            return None
        path = mcp_config.get("servers_config", "servers_config.json")
        if not os.path.isabs(path):
            path = os.path.join(os.path.dirname(__file__), path)
        return path
