"""
Swift storage configuration templates
Service configuration files and container helper scripts rendered into the
SwiftStorage config bundle. Every template kind takes a closed options model;
unknown options are rejected and unset template variables fail rendering.
"""

from typing import Dict

import jinja2
from pydantic import BaseModel, ConfigDict

from swift_operator.swift import (
    ACCOUNT_SERVER_PORT,
    CONTAINER_SERVER_PORT,
    DEVICE_NAME,
    MEMCACHED_PORT,
    OBJECT_SERVER_PORT,
    RSYNC_PORT,
)


# ===== Template Options =====
class StorageConfigOptions(BaseModel):
    """Variables of the ``*-server.conf``, ``object-expirer.conf`` and ``rsyncd.conf`` templates."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    bind_ip: str = "0.0.0.0"
    account_port: int = ACCOUNT_SERVER_PORT
    container_port: int = CONTAINER_SERVER_PORT
    object_port: int = OBJECT_SERVER_PORT
    rsync_port: int = RSYNC_PORT
    memcache_servers: str = f"127.0.0.1:{MEMCACHED_PORT}"
    devices_path: str = "/srv/node"
    mount_check: bool = False


class ScriptOptions(BaseModel):
    """Variables of the ``swift-init.sh`` and ``ring-sync.sh`` scripts."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    config_data_path: str = "/var/lib/config-data/default"
    swiftconf_path: str = "/var/lib/config-data/swiftconf"
    rings_path: str = "/var/lib/config-data/rings"
    rings_archive: str = "swiftrings.tar.gz"
    etc_path: str = "/etc/swift"
    device_path: str = f"/srv/node/{DEVICE_NAME}"
    ring_sync_interval: int = 60


# ===== Config Templates =====
_SERVER_COMMON = """\
[DEFAULT]
bind_ip = {{ bind_ip }}
bind_port = {{ port }}
devices = {{ devices_path }}
mount_check = {{ 'true' if mount_check else 'false' }}
log_name = {{ server }}-server

[pipeline:main]
pipeline = healthcheck recon {{ server }}-server

[app:{{ server }}-server]
use = egg:swift#{{ server }}

[filter:healthcheck]
use = egg:swift#healthcheck

[filter:recon]
use = egg:swift#recon
recon_cache_path = /var/cache/swift
"""

ACCOUNT_SERVER_CONF = _SERVER_COMMON + """
[account-replicator]

[account-auditor]

[account-reaper]
"""

CONTAINER_SERVER_CONF = _SERVER_COMMON + """
[container-replicator]

[container-updater]

[container-auditor]

[container-sync]
"""

OBJECT_SERVER_CONF = _SERVER_COMMON + """
[object-replicator]

[object-updater]

[object-auditor]
"""

OBJECT_EXPIRER_CONF = """\
[DEFAULT]

[object-expirer]

[pipeline:main]
pipeline = catch_errors proxy-logging cache proxy-server

[app:proxy-server]
use = egg:swift#proxy

[filter:cache]
use = egg:swift#memcache
memcache_servers = {{ memcache_servers }}

[filter:catch_errors]
use = egg:swift#catch_errors

[filter:proxy-logging]
use = egg:swift#proxy_logging
"""

RSYNCD_CONF = """\
log file = /dev/stdout
pid file = /var/lib/swift/rsyncd.pid
address = {{ bind_ip }}
port = {{ rsync_port }}
use chroot = no
{% for module in ('account', 'container', 'object') %}
[{{ module }}]
max connections = 8
path = {{ devices_path }}/
read only = false
write only = no
list = yes
incoming chmod = 0644
outgoing chmod = 0644
lock file = /var/lib/swift/{{ module }}.lock
{% endfor %}
"""

# ===== Script Templates =====
SWIFT_INIT_SH = """\
#!/bin/sh
set -ex

cp -t {{ etc_path }}/ {{ config_data_path }}/*
cp -t {{ etc_path }}/ {{ swiftconf_path }}/*

if [ -e {{ rings_path }}/{{ rings_archive }} ]; then
    tar -xzf {{ rings_path }}/{{ rings_archive }} -C {{ etc_path }}/
fi

mkdir -p {{ device_path }}/tmp /var/lib/swift
"""

RING_SYNC_SH = """\
#!/bin/sh
set -e

LAST=""
while true; do
    CURRENT=$(md5sum {{ rings_path }}/{{ rings_archive }} 2>/dev/null | cut -d' ' -f1)
    if [ -n "$CURRENT" ] && [ "$CURRENT" != "$LAST" ]; then
        tar -xzf {{ rings_path }}/{{ rings_archive }} -C {{ etc_path }}/
        LAST="$CURRENT"
    fi
    sleep {{ ring_sync_interval }}
done
"""

_env = jinja2.Environment(undefined=jinja2.StrictUndefined, keep_trailing_newline=True)


def _render(template: str, **params) -> str:
    return _env.from_string(template).render(**params)


def render_config_data(options: StorageConfigOptions) -> Dict[str, str]:
    params = options.model_dump()
    return {
        "account-server.conf": _render(ACCOUNT_SERVER_CONF, server="account", port=options.account_port, **params),
        "container-server.conf": _render(CONTAINER_SERVER_CONF, server="container", port=options.container_port, **params),
        "object-server.conf": _render(OBJECT_SERVER_CONF, server="object", port=options.object_port, **params),
        "object-expirer.conf": _render(OBJECT_EXPIRER_CONF, **params),
        "rsyncd.conf": _render(RSYNCD_CONF, **params),
    }


def render_scripts(options: ScriptOptions) -> Dict[str, str]:
    params = options.model_dump()
    return {
        "swift-init.sh": _render(SWIFT_INIT_SH, **params),
        "ring-sync.sh": _render(RING_SYNC_SH, **params),
    }
