"""
Configuration management for AssessMatch.

This module provides configuration management including:
- .env file support for environment variables
- Settings persistence to a JSON overrides file
- Default values with type conversion from the environment
- CLI integration for config management
"""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional, List
from dotenv import load_dotenv, set_key, unset_key
from rich.console import Console
from rich.table import Table


class ConfigManager:
    """Manages AssessMatch configuration settings and .env files."""

    # Default configuration values
    DEFAULT_CONFIG = {
        # Embedding backend selection
        "embedding": {
            "backend": "ollama",
            "dimension": 384,
            "retry_backoff": 0.5
        },

        # Ollama settings (local inference)
        "ollama": {
            "host": "localhost",
            "port": 11434,
            "model": "nomic-embed-text",
            "chat_model": "llama3.2",
            "timeout": 30,
            "max_retries": 3
        },

        # OpenAI settings (remote API)
        "openai": {
            "embedding_model": "text-embedding-3-small",
            "chat_model": "gpt-4o-mini",
            "timeout": 30,
            "max_retries": 3
        },

        # Reranker settings
        "reranker": {
            "enabled": True,
            "backend": "openai",
            "description_chars": 400
        },

        # Embedding cache settings
        "cache": {
            "ttl_seconds": 86400,
            "max_entries": 2048
        },

        # Input normalization
        "preprocessing": {
            "max_chars": 10000,
            "overflow_policy": "reject"
        },

        # Recommendation engine
        "engine": {
            "max_results": 10,
            "max_results_ceiling": 10,
            "overfetch_factor": 2,
            "request_timeout": 30.0,
            "wait_for_ready": True,
            "worker_threads": 4,
            "score_precision": 4
        },

        # Catalog source
        "catalog": {
            "path": "data/assessments.csv"
        },

        # Web shell
        "web": {
            "host": "0.0.0.0",
            "port": 7860
        }
    }

    # Environment variable -> (section, key)
    ENV_MAPPINGS = {
        "ASSESSMATCH_EMBEDDING_BACKEND": ("embedding", "backend"),
        "ASSESSMATCH_EMBEDDING_DIMENSION": ("embedding", "dimension"),
        "ASSESSMATCH_EMBEDDING_RETRY_BACKOFF": ("embedding", "retry_backoff"),

        "ASSESSMATCH_OLLAMA_HOST": ("ollama", "host"),
        "ASSESSMATCH_OLLAMA_PORT": ("ollama", "port"),
        "ASSESSMATCH_OLLAMA_MODEL": ("ollama", "model"),
        "ASSESSMATCH_OLLAMA_CHAT_MODEL": ("ollama", "chat_model"),
        "ASSESSMATCH_OLLAMA_TIMEOUT": ("ollama", "timeout"),
        "ASSESSMATCH_OLLAMA_MAX_RETRIES": ("ollama", "max_retries"),

        "ASSESSMATCH_OPENAI_EMBEDDING_MODEL": ("openai", "embedding_model"),
        "ASSESSMATCH_OPENAI_CHAT_MODEL": ("openai", "chat_model"),
        "ASSESSMATCH_OPENAI_TIMEOUT": ("openai", "timeout"),
        "ASSESSMATCH_OPENAI_MAX_RETRIES": ("openai", "max_retries"),

        "ASSESSMATCH_RERANK_ENABLED": ("reranker", "enabled"),
        "ASSESSMATCH_RERANK_BACKEND": ("reranker", "backend"),
        "ASSESSMATCH_RERANK_DESCRIPTION_CHARS": ("reranker", "description_chars"),

        "ASSESSMATCH_CACHE_TTL": ("cache", "ttl_seconds"),
        "ASSESSMATCH_CACHE_MAX_ENTRIES": ("cache", "max_entries"),

        "ASSESSMATCH_MAX_CHARS": ("preprocessing", "max_chars"),
        "ASSESSMATCH_OVERFLOW_POLICY": ("preprocessing", "overflow_policy"),

        "ASSESSMATCH_MAX_RESULTS": ("engine", "max_results"),
        "ASSESSMATCH_MAX_RESULTS_CEILING": ("engine", "max_results_ceiling"),
        "ASSESSMATCH_OVERFETCH_FACTOR": ("engine", "overfetch_factor"),
        "ASSESSMATCH_REQUEST_TIMEOUT": ("engine", "request_timeout"),
        "ASSESSMATCH_WAIT_FOR_READY": ("engine", "wait_for_ready"),
        "ASSESSMATCH_WORKER_THREADS": ("engine", "worker_threads"),
        "ASSESSMATCH_SCORE_PRECISION": ("engine", "score_precision"),

        "ASSESSMATCH_CATALOG_PATH": ("catalog", "path"),

        "ASSESSMATCH_WEB_HOST": ("web", "host"),
        "ASSESSMATCH_WEB_PORT": ("web", "port")
    }

    def __init__(self, config_dir: str = "."):
        self.config_dir = Path(config_dir)
        self.env_file = self.config_dir / ".env"
        self.config_file = self.config_dir / "assessmatch.config.json"
        self.console = Console()

        # Load configuration on initialization
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from .env and config files."""
        config = self._deep_copy_dict(self.DEFAULT_CONFIG)

        if self.env_file.exists():
            load_dotenv(str(self.env_file))

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    file_config = json.load(f)
                config = self._merge_configs(config, file_config)
            except (json.JSONDecodeError, FileNotFoundError) as e:
                self.console.print(f"[yellow]Warning: Could not load config file: {e}[/yellow]")

        # Environment wins over the JSON file
        config = self._apply_env_overrides(config)

        return config

    def _deep_copy_dict(self, d: Dict[str, Any]) -> Dict[str, Any]:
        """Deep copy a dictionary."""
        result = {}
        for key, value in d.items():
            if isinstance(value, dict):
                result[key] = self._deep_copy_dict(value)
            elif isinstance(value, list):
                result[key] = value.copy()
            else:
                result[key] = value
        return result

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Merge two configuration dictionaries."""
        result = self._deep_copy_dict(base)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    @staticmethod
    def convert_value(value: str, default_value: Any) -> Any:
        """Convert a string to the type of the default value."""
        if isinstance(default_value, bool):
            return value.lower() in ('true', '1', 'yes', 'on')
        if isinstance(default_value, int):
            return int(value)
        if isinstance(default_value, float):
            return float(value)
        return value

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides."""
        for env_var, (section, key) in self.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value is not None:
                try:
                    config[section][key] = self.convert_value(value, self.DEFAULT_CONFIG[section][key])
                except ValueError:
                    self.console.print(f"[yellow]Warning: Invalid value for {env_var}: {value}[/yellow]")

        return config

    def get(self, section: str, key: Optional[str] = None) -> Any:
        """Get configuration value."""
        if key is None:
            return self.config.get(section, {})
        return self.config.get(section, {}).get(key)

    def set(self, section: str, key: str, value: Any) -> bool:
        """Set configuration value."""
        if section not in self.config:
            self.config[section] = {}

        if section in self.DEFAULT_CONFIG:
            if key not in self.DEFAULT_CONFIG[section]:
                self.console.print(f"[yellow]Warning: Unknown config key '{section}.{key}'[/yellow]")

        self.config[section][key] = value
        return self.save_config()

    def save_config(self) -> bool:
        """Save current configuration to JSON file."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                json.dump(self.config, f, indent=2)
            return True
        except OSError as e:
            self.console.print(f"[red]Error saving config: {e}[/red]")
            return False

    def set_env_var(self, key: str, value: str) -> bool:
        """Set environment variable in .env file."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            set_key(str(self.env_file), key, value)
            os.environ[key] = value
            self.config = self._load_config()
            return True
        except OSError as e:
            self.console.print(f"[red]Error setting environment variable: {e}[/red]")
            return False

    def unset_env_var(self, key: str) -> bool:
        """Remove environment variable from .env file."""
        try:
            if self.env_file.exists():
                unset_key(str(self.env_file), key)
            os.environ.pop(key, None)
            self.config = self._load_config()
            return True
        except OSError as e:
            self.console.print(f"[red]Error removing environment variable: {e}[/red]")
            return False

    def reset_to_defaults(self) -> bool:
        """Reset configuration to default values."""
        self.config = self._deep_copy_dict(self.DEFAULT_CONFIG)
        return self.save_config()

    def validate_config(self) -> List[str]:
        """Validate current configuration and return list of issues."""
        from .embeddings import EMBEDDING_BACKENDS
        from .reranking import RERANK_BACKENDS
        from .preprocessing import OVERFLOW_POLICIES

        issues = []

        backend = self.get("embedding", "backend")
        if backend not in EMBEDDING_BACKENDS:
            issues.append(f"Invalid embedding backend: {backend}")

        dimension = self.get("embedding", "dimension")
        if not isinstance(dimension, int) or dimension <= 0:
            issues.append(f"Invalid embedding dimension: {dimension}")

        ollama_port = self.get("ollama", "port")
        if not isinstance(ollama_port, int) or ollama_port < 1 or ollama_port > 65535:
            issues.append(f"Invalid Ollama port: {ollama_port}")

        for section in ("ollama", "openai"):
            timeout = self.get(section, "timeout")
            if not isinstance(timeout, (int, float)) or timeout <= 0:
                issues.append(f"Invalid {section} timeout: {timeout}")

        rerank_backend = self.get("reranker", "backend")
        if rerank_backend not in RERANK_BACKENDS:
            issues.append(f"Invalid reranker backend: {rerank_backend}")

        for key in ("ttl_seconds", "max_entries"):
            value = self.get("cache", key)
            if not isinstance(value, (int, float)) or value <= 0:
                issues.append(f"Invalid cache {key}: {value}")

        max_chars = self.get("preprocessing", "max_chars")
        if not isinstance(max_chars, int) or max_chars <= 0:
            issues.append(f"Invalid max_chars: {max_chars}")

        policy = self.get("preprocessing", "overflow_policy")
        if policy not in OVERFLOW_POLICIES:
            issues.append(f"Invalid overflow policy: {policy}")

        max_results = self.get("engine", "max_results")
        ceiling = self.get("engine", "max_results_ceiling")
        if not isinstance(max_results, int) or max_results <= 0:
            issues.append(f"Invalid max_results: {max_results}")
        if not isinstance(ceiling, int) or ceiling <= 0:
            issues.append(f"Invalid max_results_ceiling: {ceiling}")

        overfetch = self.get("engine", "overfetch_factor")
        if not isinstance(overfetch, int) or overfetch < 1:
            issues.append(f"Invalid overfetch factor: {overfetch}")

        timeout = self.get("engine", "request_timeout")
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            issues.append(f"Invalid request timeout: {timeout}")

        catalog_path = self.get("catalog", "path")
        if not catalog_path or not Path(catalog_path).exists():
            issues.append(f"Catalog file not found: {catalog_path}")

        return issues

    def display_config(self) -> None:
        """Display current configuration in a formatted table."""
        self.console.print("[bold cyan]AssessMatch Configuration[/bold cyan]")
        self.console.print()

        for section_name, section_data in self.config.items():
            table = Table(title=f"{section_name.title()} Settings")
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="green")
            table.add_column("Type", style="dim")

            for key, value in section_data.items():
                value_str = str(value)
                if isinstance(value, bool):
                    value_str = "✓" if value else "✗"
                elif isinstance(value, str) and len(value) > 50:
                    value_str = value[:47] + "..."

                table.add_row(
                    key.replace("_", " ").title(),
                    value_str,
                    type(value).__name__
                )

            self.console.print(table)
            self.console.print()

    def get_env_template(self) -> str:
        """Generate a template .env file with all available settings."""
        template_lines = [
            "# AssessMatch Configuration",
            "# Copy this file to .env and modify as needed",
            "",
            "# Required for the openai embedding or reranker backends",
            "# OPENAI_API_KEY=",
        ]

        current_section = None
        for env_var, (section, key) in self.ENV_MAPPINGS.items():
            if section != current_section:
                template_lines.append("")
                template_lines.append(f"# {section.title()} Settings")
                current_section = section
            default_value = self.DEFAULT_CONFIG[section][key]
            if isinstance(default_value, bool):
                default_value = str(default_value).lower()
            template_lines.append(f"# {env_var}={default_value}")

        template_lines.append("")
        return "\n".join(template_lines)

    def export_env_template(self, output_path: Optional[str] = None) -> bool:
        """Export .env template to file."""
        try:
            template_path = output_path or ".env.template"
            with open(template_path, 'w') as f:
                f.write(self.get_env_template())
            self.console.print(f"[green]✓ .env template exported to: {template_path}[/green]")
            return True
        except OSError as e:
            self.console.print(f"[red]Error exporting template: {e}[/red]")
            return False

    def get_connection_info(self) -> Dict[str, Any]:
        """Get connection information for backends."""
        return {
            "embedding_backend": self.get("embedding", "backend"),
            "reranker_backend": self.get("reranker", "backend") if self.get("reranker", "enabled") else "none",
            "ollama": {
                "url": f"http://{self.get('ollama', 'host')}:{self.get('ollama', 'port')}",
                "model": self.get("ollama", "model")
            },
            "openai": {
                "api_key_set": bool(os.getenv("OPENAI_API_KEY")),
                "embedding_model": self.get("openai", "embedding_model")
            },
            "catalog": {
                "path": self.get("catalog", "path"),
                "exists": Path(self.get("catalog", "path")).exists() if self.get("catalog", "path") else False
            }
        }


def get_config_manager() -> ConfigManager:
    """Get global configuration manager instance."""
    if not hasattr(get_config_manager, '_instance'):
        get_config_manager._instance = ConfigManager()
    return get_config_manager._instance


def reload_config():
    """Reload configuration from files."""
    if hasattr(get_config_manager, '_instance'):
        get_config_manager._instance = ConfigManager()
    return get_config_manager()
