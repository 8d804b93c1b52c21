"""Constants module for contenant.

All fixed paths, ports, timeouts and shared constants are defined here (SSOT).
"""

from __future__ import annotations

APP_NAME = "contenant"

# === Image names ===
BASE_IMAGE = "contenant:base"
USER_IMAGE = "contenant:user"
IMAGE_REPOSITORY = "contenant"
HASH_LABEL = "contenant.hash"

# === Config file locations ===
CONFIG_FILENAME = "config.yml"
PROJECT_CONFIG_DIR = ".contenant"  # Relative to project root
DOCKERFILE_NAME = "Dockerfile"

# === Container paths ===
CONTAINER_USER = "claude"
CONTAINER_HOME = "/home/claude"
CONTAINER_WORKDIR = "/workspace"
CONTAINER_CLAUDE_DIR = f"{CONTAINER_HOME}/.claude"
CONTAINER_SKILLS_DIR = f"{CONTAINER_CLAUDE_DIR}/skills"
CONTAINER_KNOWN_HOSTS = f"{CONTAINER_HOME}/.ssh/known_hosts"
ALLOWED_IPS_PATH = "/etc/contenant/allowed-ips"

# === Bridge ===
DEFAULT_BRIDGE_PORT = 19432
BRIDGE_HOST = "127.0.0.1"
HOST_GATEWAY = "host.docker.internal"
BRIDGE_URL_ENV = "CONTENANT_BRIDGE_URL"
TRIGGER_SHELL = "sh"

# === Network allowlist ===
GITHUB_API_HOST = "api.github.com"
GITHUB_META_URL = "https://api.github.com/meta"
GITHUB_META_KEYS = ("web", "api", "git")
REQUEST_TIMEOUT = 10  # Seconds for the metadata fetch
DEFAULT_ALLOWED_DOMAINS = (
    "api.anthropic.com",
    "statsig.anthropic.com",
    "sentry.io",
    "registry.npmjs.org",
)

# === Backend ===
DEFAULT_RUNTIME = "docker"
SUPPORTED_RUNTIMES = ("docker", "container")  # Docker CLI, Apple container CLI
BACKEND_COMMAND_TIMEOUT = 600  # Image builds and tags
INSPECT_TIMEOUT = 30  # Image label lookups
