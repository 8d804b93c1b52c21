"""Base image build context for contenant.

The base image is built from files embedded here and written to the cache
directory before every run; the runtime's build cache makes unchanged
rebuilds cheap.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from .constants import (
    ALLOWED_IPS_PATH,
    CONTAINER_HOME,
    CONTAINER_USER,
    CONTAINER_WORKDIR,
    HASH_LABEL,
)

if TYPE_CHECKING:
    from pathlib import Path

    from .paths import AppDirs

# System packages needed by the firewall entrypoint and Claude Code
SYSTEM_PACKAGES = """
RUN apt-get update && apt-get install -y --no-install-recommends \\
    git curl ca-certificates bash openssh-client \\
    nftables iproute2 ripgrep jq less procps \\
    && rm -rf /var/lib/apt/lists/*
"""

# Claude Code, pinned when CLAUDE_VERSION is given
CLAUDE_INSTALL = """
ARG CLAUDE_VERSION=latest
RUN npm config set fund false && npm config set update-notifier false \\
    && npm install -g @anthropic-ai/claude-code@${CLAUDE_VERSION} \\
    && npm cache clean --force
"""


def generate_dockerfile() -> str:
    """Generate the base Dockerfile."""
    return f"""# syntax=docker/dockerfile:1
# contenant:base - Claude Code behind an allowlist firewall
FROM node:slim

ARG IMAGE_HASH=unknown
LABEL org.opencontainers.image.title="contenant:base"
LABEL {HASH_LABEL}="${{IMAGE_HASH}}"

ENV DEBIAN_FRONTEND=noninteractive
{SYSTEM_PACKAGES}
{CLAUDE_INSTALL}
RUN useradd --create-home --home-dir {CONTAINER_HOME} --shell /bin/bash {CONTAINER_USER} \\
    && mkdir -p {CONTAINER_HOME}/.claude {CONTAINER_HOME}/.ssh \\
    && chown -R {CONTAINER_USER}:{CONTAINER_USER} {CONTAINER_HOME}

COPY --chown={CONTAINER_USER}:{CONTAINER_USER} claude.json {CONTAINER_HOME}/.claude.json
COPY --chmod=755 entrypoint.sh /usr/local/bin/entrypoint.sh

WORKDIR {CONTAINER_WORKDIR}

# Starts as root to load the firewall, entrypoint drops to {CONTAINER_USER}
ENTRYPOINT ["/usr/local/bin/entrypoint.sh"]
"""


def generate_claude_json() -> str:
    """Generate Claude Code's initial global settings (skips onboarding)."""
    return """{
  "hasCompletedOnboarding": true,
  "bypassPermissionsModeAccepted": true,
  "autoUpdates": false
}
"""


def generate_entrypoint() -> str:
    """Generate the entrypoint script.

    Loads an nftables ruleset that drops all outbound traffic except
    loopback, DNS, SSH, the host network (runtime + bridge) and the CIDRs
    listed in the allowlist file, then runs Claude Code as the unprivileged
    user.
    """
    return f"""#!/bin/bash
set -euo pipefail
IFS=$'\\n\\t'

# Build the set of allowed CIDRs from the file mounted by contenant
ALLOWED_ELEMENTS=""
while IFS= read -r cidr; do
    if [ -n "$cidr" ]; then
        [ -n "$ALLOWED_ELEMENTS" ] && ALLOWED_ELEMENTS+=", "
        ALLOWED_ELEMENTS+="$cidr"
    fi
done < {ALLOWED_IPS_PATH}

# Host network carries the runtime gateway and the bridge server
HOST_IP=$(ip route | grep default | cut -d" " -f3)
HOST_NETWORK=$(echo "$HOST_IP" | sed "s/\\.[0-9]*$/.0\\/24/")

nft -f - <<EOF
table inet contenant {{
    set allowed-ips {{
        type ipv4_addr
        flags interval
        $([ -n "$ALLOWED_ELEMENTS" ] && echo "elements = {{ $ALLOWED_ELEMENTS }}")
    }}

    chain output {{
        type filter hook output priority 0; policy drop;
        oifname "lo" accept
        udp dport 53 accept
        tcp dport 22 accept
        ip daddr $HOST_NETWORK accept
        ct state established,related accept
        ip daddr @allowed-ips accept
        reject with icmpx admin-prohibited
    }}

    chain input {{
        type filter hook input priority 0; policy drop;
        iifname "lo" accept
        ct state established,related accept
        ip saddr $HOST_NETWORK accept
    }}
}}
EOF

export HOME={CONTAINER_HOME}
exec runuser -u {CONTAINER_USER} -- claude --dangerously-skip-permissions "$@"
"""


BUILD_FILES = {
    "Dockerfile": generate_dockerfile,
    "claude.json": generate_claude_json,
    "entrypoint.sh": generate_entrypoint,
}


def image_hash(claude_version: str | None = None) -> str:
    """Short hash of the build files (sorted by name) and the Claude version.

    Stamped on the base image as a label; an image carrying the same hash
    does not need rebuilding.
    """
    hasher = hashlib.sha256()
    for name in sorted(BUILD_FILES):
        hasher.update(BUILD_FILES[name]().encode("utf-8"))
    if claude_version is not None:
        hasher.update(f"CLAUDE_VERSION={claude_version}".encode())
    return hasher.hexdigest()[:12]


def write_build_files(app_dirs: AppDirs) -> Path:
    """Write the base build context into the cache directory.

    Returns:
        The build context directory.
    """
    for filename, generate in BUILD_FILES.items():
        path = app_dirs.place_cache_file(filename)
        # Unix line endings regardless of host platform
        with open(path, "w", encoding="utf-8", newline="\n") as f:
            f.write(generate())

    return app_dirs.cache_home
